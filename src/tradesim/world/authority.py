from ..core.ids import ActorId
from .directory import LocationDirectory
from .model import LocationRef


class Authority:
    """Answers who may govern a territory: its ruler, or the ruler of the kingdom above it."""

    def __init__(self, directory: LocationDirectory):
        self.directory = directory

    def is_authority(self, actor_id: ActorId, territory: LocationRef) -> bool:
        if not territory.is_territory:
            return False
        for ref in self.directory.territory_chain(territory):
            ruler = self.directory.ruler_of(ref)
            if ruler is not None and ruler == actor_id:
                return True
        return False

    def controls_location(self, actor_id: ActorId, location: LocationRef) -> bool:
        """True if the actor governs the territory the location belongs to."""
        resolved = self.directory.find(location)
        if resolved is None:
            return False
        return self.is_authority(actor_id, resolved.territory)

    def is_noble(self, actor_id: ActorId) -> bool:
        return bool(self.directory.territories_ruled_by(actor_id))

