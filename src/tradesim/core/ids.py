from typing import NewType

ActorId = NewType('ActorId', str)
LocationId = NewType('LocationId', str)
ItemId = NewType('ItemId', str)
RouteId = NewType('RouteId', str)
CaravanId = NewType('CaravanId', str)
TariffId = NewType('TariffId', str)
