from .app import VoiceApp
from .errors import VoiceCommandError
from .registry import COMMANDS, Command, CommandRegistry, Stats, command_label

__version__ = "0.1.0"
