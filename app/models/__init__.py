from app.models.rider import Rider
from app.models.ride import Ride

__all__ = ["Rider", "Ride"]
