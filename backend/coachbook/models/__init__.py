from .tables import Availability, Base, BlockedDates, Users, metadata

__all__ = ["Base", "metadata", "Users", "Availability", "BlockedDates"]
