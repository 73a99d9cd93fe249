from .channel import ChannelClosed, Receiver, Sender, channel
from .clock import (
    CLOCK_TYPES,
    Clock,
    ClockValue,
    LamportClock,
    VectorClock,
    concurrent,
    dominates,
    happened_before,
    make_clock,
)
from .detector import CausalityChecker
from .decision import (
    Action,
    ActionWeights,
    random_decider,
    random_peer_chooser,
    scripted_decider,
    scripted_peers,
)
from .node import Message, Node
from .orchestrator import (
    Simulation,
    SimulationConfig,
    SimulationResult,
    build_mesh,
    run_simulation,
)
from .pipeline import Consumer, Producer, SharedClock, run_pipeline
from .trace import EventTrace, TraceEvent, load_trace
