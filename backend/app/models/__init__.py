from app.models.activity import Activity
from app.models.credential import StravaCredential

__all__ = [
    "Activity",
    "StravaCredential",
]
