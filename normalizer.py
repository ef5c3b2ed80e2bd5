"""Normalization helpers for scraped listing and chapter text."""
import re
from typing import Iterable, List, Tuple

SIZE_UNITS = [
    ('T', 2 ** 40),
    ('G', 2 ** 30),
    ('M', 2 ** 20),
    ('K', 2 ** 10),
]


def parse_count(value: str) -> int:
    """
    Parse a displayed count such as ``"12,345"``.

    Raises:
        ValueError: if the value is not a number
    """
    return int(value.replace(',', '').strip())


def format_size(n: int) -> str:
    """Render a byte count with a binary unit suffix, e.g. ``12K``."""
    for label, factor in SIZE_UNITS:
        if n > factor:
            return f"{round(n / factor)}{label}"
    return str(n)


class GenreNormalizer:
    """
    Split genre strings from the listing stats line.

    Genres are joined with ``/`` on the site, which collides with the
    ``Hurt/Comfort`` genre name.
    """

    # Genres whose names contain the separator
    COMPOUND_GENRES = {
        'Hurt/Comfort': '_HC_',
    }

    @classmethod
    def split_genres(cls, raw: str) -> List[str]:
        """
        Split a raw genre string into genre names.

        Args:
            raw: Genre segment, e.g. ``"Adventure/Hurt/Comfort"``

        Returns:
            List of genre names in listing order
        """
        if not raw:
            return []

        for name, placeholder in cls.COMPOUND_GENRES.items():
            raw = raw.replace(name, placeholder)

        genres = []
        for genre in raw.split('/'):
            for name, placeholder in cls.COMPOUND_GENRES.items():
                genre = genre.replace(placeholder, name)
            genre = genre.strip()
            if genre:
                genres.append(genre)
        return genres


class CharacterNormalizer:
    """Parse the characters segment of the listing stats line."""

    PAIRING_PATTERN = re.compile(r'\[(.+?)\]')

    @classmethod
    def parse_characters(cls, raw: str) -> Tuple[List[str], List[List[str]]]:
        """
        Parse characters and pairings.

        ``"[Ruby R., Weiss S.] Blake B."`` yields the sorted characters
        ``["Blake B.", "Ruby R.", "Weiss S."]`` and the relationships
        ``[["Ruby R.", "Weiss S."]]``.

        Args:
            raw: Characters segment of the stats line

        Returns:
            Tuple of (characters, relationships), each name list sorted
        """
        characters = sorted(_clean_names(re.split(r'[\[\],]', raw)))
        relationships = [
            sorted(_clean_names(pairing.split(',')))
            for pairing in cls.PAIRING_PATTERN.findall(raw)
        ]
        return characters, relationships


def _clean_names(names: Iterable[str]) -> List[str]:
    return [name.strip() for name in names if name.strip()]


class ContentCleaner:
    """Text statistics for parsed chapter content."""

    WORD_PATTERN = re.compile(r'\S+')

    def normalize_whitespace(self, text: str) -> str:
        """Collapse runs of whitespace inside a text fragment."""
        return re.sub(r'\s+', ' ', text)

    def count_words(self, texts: Iterable[str]) -> int:
        """
        Count words across text fragments.

        Fragments are joined without separators first, since formatting
        boundaries can fall inside a word.
        """
        return len(self.WORD_PATTERN.findall(''.join(texts)))
