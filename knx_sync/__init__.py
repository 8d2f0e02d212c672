"""KNX to object store bridge: ETS project import and live bus synchronization"""

__version__ = "1.0.0"

from .bridge import KnxBridge
from .importer import ImportEngine, build_entries
from .models import AccessFlags, ImportEntry, ImportResult, MappingRecord

__all__ = [
    'AccessFlags',
    'ImportEngine',
    'ImportEntry',
    'ImportResult',
    'KnxBridge',
    'MappingRecord',
    'build_entries',
    '__version__',
]
