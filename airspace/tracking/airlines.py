"""
Airline display names from callsign prefixes.

The first three characters of an ICAO callsign identify the operator
(e.g. 'DLH' in 'DLH4AB'). A built-in table covers common carriers;
an optional airlines.json (prefix -> name) extends or overrides it.

Usage:
    resolver = AirlineResolver.from_file('airlines.json')
    resolver.resolve('DLH4AB ')   # 'Lufthansa'
    resolver.resolve('N123AB')    # 'N123AB'
"""

import json
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

UNKNOWN_CALLSIGN = 'UNKNOWN'

# Common airline ICAO prefixes for display enrichment
AIRLINE_NAMES: Dict[str, str] = {
    'AAL': 'American Airlines',
    'ACA': 'Air Canada',
    'AEE': 'Aegean Airlines',
    'AFR': 'Air France',
    'AUA': 'Austrian Airlines',
    'BAW': 'British Airways',
    'BEL': 'Brussels Airlines',
    'CFG': 'Condor',
    'CPA': 'Cathay Pacific',
    'DAL': 'Delta Air Lines',
    'DLH': 'Lufthansa',
    'EJU': 'easyJet Europe',
    'EWG': 'Eurowings',
    'EZS': 'easyJet Switzerland',
    'EZY': 'easyJet',
    'FDX': 'FedEx Express',
    'IBE': 'Iberia',
    'KLM': 'KLM Royal Dutch',
    'RYR': 'Ryanair',
    'SWR': 'Swiss',
    'TAP': 'TAP Air Portugal',
    'THY': 'Turkish Airlines',
    'TUI': 'TUIfly',
    'UAE': 'Emirates',
    'UAL': 'United Airlines',
    'UPS': 'UPS Airlines',
    'WZZ': 'Wizz Air',
}


class AirlineResolver:
    """Resolve raw callsigns to display names with identity fallback."""

    def __init__(self, mapping: Optional[Mapping[str, str]] = None):
        self._names: Dict[str, str] = {
            prefix.upper(): name for prefix, name in (mapping or {}).items() if name
        }

    @classmethod
    def from_file(cls, path: Optional[str], include_builtin: bool = True) -> 'AirlineResolver':
        """
        Build a resolver from a JSON prefix table.

        A missing or unreadable file is not an error; the built-in table
        is used on its own.
        """
        mapping: Dict[str, str] = dict(AIRLINE_NAMES) if include_builtin else {}
        if path and Path(path).is_file():
            try:
                with open(path, encoding='utf-8') as fh:
                    data = json.load(fh)
                if isinstance(data, dict):
                    mapping.update({str(k): str(v) for k, v in data.items()})
                    logger.info(f'Loaded {len(data)} airline prefixes from {path}')
                else:
                    logger.warning(f'{path} is not a prefix object, ignoring')
            except (OSError, ValueError) as e:
                logger.warning(f'Could not read {path}, using built-in airline table: {e}')
        elif path:
            logger.debug(f'{path} not found, using built-in airline table')
        return cls(mapping)

    def resolve(self, raw_callsign: Optional[str]) -> str:
        callsign = (raw_callsign or '').strip()
        if not callsign:
            return UNKNOWN_CALLSIGN
        return self._names.get(callsign[:3].upper(), callsign)

    def __len__(self) -> int:
        return len(self._names)
