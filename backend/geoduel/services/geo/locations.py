import random
from dataclasses import dataclass, asdict
from typing import List, Optional

from .errors import InvalidInput


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float
    city: str = ''
    country: str = ''
    img: str = ''
    hint: str = ''

    @property
    def label(self) -> str:
        return ', '.join(part for part in (self.city, self.country) if part)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'Location':
        try:
            return cls(
                lat=float(data['lat']),
                lng=float(data['lng']),
                city=data.get('city') or '',
                country=data.get('country') or '',
                img=data.get('img') or '',
                hint=data.get('hint') or '',
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidInput(f'Malformed location: {data!r}') from exc


def _wiki(name: str) -> str:
    return f'https://commons.wikimedia.org/wiki/Special:FilePath/{name}?width=1200'


CATALOG: List[Location] = [
    Location(48.8584, 2.2945, 'Paris', 'France', _wiki('Tour_Eiffel_Wikimedia_Commons.jpg'), 'Iron lattice by the river'),
    Location(41.8902, 12.4922, 'Rome', 'Italy', _wiki('Colosseo_2020.jpg'), 'Ancient arena'),
    Location(40.6892, -74.0445, 'New York', 'United States', _wiki('Statue_of_Liberty_7.jpg'), 'Copper lady in a harbour'),
    Location(-33.8568, 151.2153, 'Sydney', 'Australia', _wiki('Sydney_Opera_House_-_Dec_2008.jpg'), 'Sails on the water'),
    Location(27.1751, 78.0421, 'Agra', 'India', _wiki('Taj_Mahal_(Edited).jpeg'), 'White marble mausoleum'),
    Location(-22.9519, -43.2105, 'Rio de Janeiro', 'Brazil', _wiki('Christ_the_Redeemer_-_Cristo_Redentor.jpg'), 'Arms wide above the bay'),
    Location(35.6586, 139.7454, 'Tokyo', 'Japan', _wiki('Tokyo_Tower_and_around_Skyscrapers.jpg'), 'Red and white tower'),
    Location(29.9792, 31.1342, 'Giza', 'Egypt', _wiki('All_Gizah_Pyramids.jpg'), 'Desert monuments'),
    Location(51.5007, -0.1246, 'London', 'United Kingdom', _wiki('Clock_Tower_-_Palace_of_Westminster,_London_-_May_2007.jpg'), 'Clock tower by the river'),
    Location(-13.1631, -72.5450, 'Machu Picchu', 'Peru', _wiki('Machu_Picchu,_Peru.jpg'), 'Terraces in the clouds'),
    Location(40.4319, 116.5704, 'Beijing', 'China', _wiki('The_Great_Wall_of_China_at_Jinshanling-edit.jpg'), 'Wall on the ridges'),
    Location(37.9715, 23.7257, 'Athens', 'Greece', _wiki('The_Parthenon_in_Athens.jpg'), 'Temple on a rock'),
    Location(50.4501, 30.5234, 'Kyiv', 'Ukraine', _wiki('Kyiv_Pechersk_Lavra.jpg'), 'Golden domes over the Dnipro'),
    Location(49.8397, 24.0297, 'Lviv', 'Ukraine', _wiki('Lviv_Opera_House.jpg'), 'Opera at the end of a boulevard'),
    Location(41.4036, 2.1744, 'Barcelona', 'Spain', _wiki('Sagrada_Familia_01.jpg'), 'Unfinished basilica'),
    Location(55.7520, 37.6175, 'Moscow', 'Russia', _wiki('Saint_Basil%27s_Cathedral.jpg'), 'Onion domes on a square'),
    Location(13.4125, 103.8670, 'Siem Reap', 'Cambodia', _wiki('Angkor_Wat.jpg'), 'Temple in the jungle'),
    Location(-33.9249, 18.4241, 'Cape Town', 'South Africa', _wiki('Table_Mountain_DanieVDM.jpg'), 'Flat-topped mountain'),
    Location(64.1466, -21.9426, 'Reykjavik', 'Iceland', _wiki('Hallgrimskirkja_in_Reykjavik.jpg'), 'Basalt-column church'),
    Location(1.2834, 103.8607, 'Singapore', 'Singapore', _wiki('Marina_Bay_Sands_in_the_evening_-_20101120.jpg'), 'Ship on three towers'),
    Location(25.1972, 55.2744, 'Dubai', 'United Arab Emirates', _wiki('Burj_Khalifa.jpg'), 'Tallest tower'),
    Location(37.8199, -122.4783, 'San Francisco', 'United States', _wiki('GoldenGateBridge-001.jpg'), 'Orange bridge in the fog'),
    Location(43.0828, -79.0742, 'Niagara Falls', 'Canada', _wiki('Niagara_Falls,_from_the_Canadian_side.jpg'), 'Horseshoe waterfall'),
    Location(-27.1127, -109.3497, 'Easter Island', 'Chile', _wiki('Moai_Rano_raraku.jpg'), 'Stone heads'),
    Location(20.6843, -88.5678, 'Chichen Itza', 'Mexico', _wiki('Chichen_Itza_3.jpg'), 'Stepped pyramid'),
    Location(52.5163, 13.3777, 'Berlin', 'Germany', _wiki('Brandenburger_Tor_abends.jpg'), 'Gate with a quadriga'),
    Location(59.9139, 10.7522, 'Oslo', 'Norway', _wiki('Oslo_Opera_House.jpg'), 'Walk on the opera roof'),
    Location(-41.2865, 174.7762, 'Wellington', 'New Zealand', _wiki('Wellington_Cable_Car.jpg'), 'Red cable car'),
    Location(30.3285, 35.4444, 'Petra', 'Jordan', _wiki('Al_Khazneh_Petra_edit_2.jpg'), 'Carved in rose rock'),
    Location(-3.0674, 37.3556, 'Kilimanjaro', 'Tanzania', _wiki('Mt._Kilimanjaro_12.2006.JPG'), 'Snow near the equator'),
]


def get_random_locations(count: int, rng: Optional[random.Random] = None) -> List[Location]:
    """Pick ``count`` distinct catalog locations in play order."""
    if count < 1 or count > len(CATALOG):
        raise InvalidInput(f'Round count must be between 1 and {len(CATALOG)}')
    return (rng or random).sample(CATALOG, count)
