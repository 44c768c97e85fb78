from app.schemas.schemas import Place

# Lagos, around Yaba
PICKUP = Place(lat=6.5244, lng=3.3792, address="Yaba, Lagos")
DROPOFF = Place(lat=6.4550, lng=3.3941, address="Victoria Island, Lagos")

KM_PER_DEGREE_LAT = 111.19


def north_of(place: Place, km: float) -> tuple[float, float]:
    """Point `km` due north of `place`."""
    return place.lat + km / KM_PER_DEGREE_LAT, place.lng


class RecordingNotifier:
    """Collects published events instead of pushing them anywhere."""

    def __init__(self):
        self.sent: list[tuple[str, str, dict]] = []

    async def publish(self, topic, event, payload):
        self.sent.append((topic, event, payload))

    def events(self, topic: str | None = None) -> list[str]:
        return [event for t, event, _ in self.sent if topic is None or t == topic]

    def payloads(self, event: str) -> list[dict]:
        return [payload for _, e, payload in self.sent if e == event]
