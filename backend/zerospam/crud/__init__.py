from .blocked import (
    add_or_update_blocked,
    delete_blocked,
    find_active_match,
    get_blocked,
    list_blocked,
    validate_block_entry,
)
from .log import append_log_entry, detections_by_country, detections_by_day, query_log, top_ips
from .settings import get_setting, get_settings_snapshot, update_settings
