from .blocked import BlockEntry
from .log_entries import EventLogEntry
from .settings import DetectorSetting
