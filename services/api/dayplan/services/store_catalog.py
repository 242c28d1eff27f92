"""Candidate stores for the shopping optimizer.

The default catalog is a fixed set of Birmingham supermarkets. Each store
stocks exactly the items it has a price for; prices are per unit.
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Iterable, Optional

from ..errors import InvalidInputError
from .travel import Location

PRICE_LEVELS = ("budget", "mid", "premium")
WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def normalize_item_name(name: str) -> str:
    return " ".join(name.lower().split())


@dataclass
class Store:
    id: str
    name: str
    address: str
    location: Location
    price_level: str
    # weekday -> (open, close); a missing weekday means closed all day
    opening_hours: dict[str, tuple[time, time]] = field(default_factory=dict)
    prices: dict[str, float] = field(default_factory=dict)
    user_rating: Optional[float] = None

    def price_of(self, item_name: str) -> Optional[float]:
        return self.prices.get(normalize_item_name(item_name))

    def stocks(self, item_name: str) -> bool:
        return normalize_item_name(item_name) in self.prices

    def is_open_at(self, moment: datetime) -> bool:
        hours = self.opening_hours.get(WEEKDAYS[moment.weekday()])
        if hours is None:
            return False
        opens, closes = hours
        return opens <= moment.time() < closes

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "latitude": self.location.latitude,
            "longitude": self.location.longitude,
            "price_level": self.price_level,
            "user_rating": self.user_rating,
            "opening_hours": {
                day: {"open": o.strftime("%H:%M"), "close": c.strftime("%H:%M")}
                for day, (o, c) in self.opening_hours.items()
            },
            "prices": dict(self.prices),
        }


def _hours(weekday: tuple[int, int], saturday: tuple[int, int], sunday: Optional[tuple[int, int]]):
    hours = {day: (time(weekday[0]), time(weekday[1])) for day in WEEKDAYS[:5]}
    hours["sat"] = (time(saturday[0]), time(saturday[1]))
    if sunday is not None:
        hours["sun"] = (time(sunday[0]), time(sunday[1]))
    return hours


BASE_PRICES = {
    "bread": 1.20,
    "milk": 1.45,
    "eggs": 2.10,
    "chicken": 4.50,
    "rice": 1.60,
    "pasta": 0.95,
    "vegetables": 2.00,
    "cheese": 2.80,
    "fish": 4.20,
    "bananas": 1.10,
    "apples": 1.80,
    "potatoes": 1.50,
    "butter": 2.20,
    "yogurt": 1.40,
    "coffee": 3.50,
    "tea": 2.10,
    "organic vegetables": 3.00,
}

CORE_RANGE = ("bread", "milk", "eggs", "chicken", "vegetables", "pasta", "rice")


def _price_list(multiplier: float, items: Iterable[str]) -> dict[str, float]:
    return {item: round(BASE_PRICES[item] * multiplier, 2) for item in items}


DEFAULT_STORES: tuple[Store, ...] = (
    Store(
        id="aldi-digbeth",
        name="Aldi",
        address="Digbeth High St, Birmingham B5 6DY",
        location=Location(52.4753, -1.8839, "Aldi"),
        price_level="budget",
        opening_hours=_hours((8, 22), (8, 22), (10, 16)),
        prices=_price_list(0.85, CORE_RANGE + ("bananas", "potatoes", "butter")),
        user_rating=4.2,
    ),
    Store(
        id="lidl-bristol-rd",
        name="Lidl",
        address="Bristol Rd, Selly Oak, Birmingham B29 6BD",
        location=Location(52.4418, -1.9366, "Lidl"),
        price_level="budget",
        opening_hours=_hours((8, 22), (8, 22), (10, 16)),
        prices=_price_list(0.87, CORE_RANGE + ("apples", "yogurt", "coffee")),
        user_rating=4.0,
    ),
    Store(
        id="tesco-express-new-st",
        name="Tesco Express",
        address="New St, Birmingham B2 4RH",
        location=Location(52.4789, -1.8990, "Tesco Express"),
        price_level="mid",
        opening_hours=_hours((6, 23), (6, 23), (10, 16)),
        prices=_price_list(1.0, CORE_RANGE + ("cheese", "fish", "bananas", "tea", "coffee")),
        user_rating=3.8,
    ),
    Store(
        id="sainsburys-selly-oak",
        name="Sainsbury's",
        address="Selly Oak Shopping Park, Birmingham B29 6SN",
        location=Location(52.4420, -1.9300, "Sainsbury's"),
        price_level="mid",
        opening_hours=_hours((7, 22), (7, 22), (10, 16)),
        prices=_price_list(
            1.05,
            CORE_RANGE + ("cheese", "fish", "organic vegetables", "apples", "butter", "yogurt"),
        ),
        user_rating=4.1,
    ),
    Store(
        id="coop-edgbaston",
        name="Co-op",
        address="Hagley Rd, Edgbaston, Birmingham B16 8LB",
        location=Location(52.4730, -1.9260, "Co-op"),
        price_level="mid",
        opening_hours=_hours((7, 22), (7, 22), (8, 22)),
        prices=_price_list(1.15, ("bread", "milk", "eggs", "pasta", "tea", "bananas")),
        user_rating=3.6,
    ),
    Store(
        id="waitrose-harborne",
        name="Waitrose",
        address="High St, Harborne, Birmingham B17 9QG",
        location=Location(52.4597, -1.9532, "Waitrose"),
        price_level="premium",
        opening_hours=_hours((8, 21), (8, 21), (10, 16)),
        prices=_price_list(
            1.25, CORE_RANGE + ("cheese", "fish", "organic vegetables", "coffee", "tea")
        ),
        user_rating=4.5,
    ),
)


def list_stores(
    price_level: Optional[str] = None,
    open_at: Optional[datetime] = None,
    near: Optional[Location] = None,
    radius_km: Optional[float] = None,
    stores: Iterable[Store] = DEFAULT_STORES,
) -> list[Store]:
    """Filter the catalog. With `near`, results are sorted by distance."""
    if price_level is not None and price_level not in PRICE_LEVELS:
        raise InvalidInputError(
            f"Unknown price level '{price_level}'", allowed=list(PRICE_LEVELS)
        )
    if radius_km is not None and near is None:
        raise InvalidInputError("radius_km requires a location")

    result = []
    for store in stores:
        if price_level and store.price_level != price_level:
            continue
        if open_at and not store.is_open_at(open_at):
            continue
        if near and radius_km is not None and near.distance_km(store.location) > radius_km:
            continue
        result.append(store)

    if near:
        result.sort(key=lambda s: (near.distance_km(s.location), s.id))
    return result
