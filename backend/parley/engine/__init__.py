"""Engine module - generation runs and the session operation surface."""

from .stream_handler import RunState, StreamHandler
from .session_controller import SessionController
from .title_generator import generate_title, should_generate_title

__all__ = [
    'RunState',
    'StreamHandler',
    'SessionController',
    'generate_title',
    'should_generate_title',
]
