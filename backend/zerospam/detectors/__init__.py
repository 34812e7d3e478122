# Importing the detector modules registers them, in default order.
from .base import (
    Detector,
    DetectorVerdict,
    VisitorEvent,
    build_detectors,
    no_opinion,
    register_detector,
    registered_detector_ids,
)
from .whitelist import WhitelistDetector
from .blocklist import BlockListDetector
from .stop_forum_spam import StopForumSpamDetector
from .geo import GeoDetector
