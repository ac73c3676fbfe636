"""Sample decks loaded into an empty store."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class DeckSeed:
    deck: dict
    created_at: str
    updated_at: str
    slug: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[list[str]] = None
    submitted_by: Optional[str] = None
    status: str = "published"
    rejection_reason: Optional[str] = None


def _words(texts: str, difficulty: Optional[int] = None, category: Optional[str] = None) -> list[dict]:
    words = []
    for index, text in enumerate(texts.split(",")):
        word: dict = {"text": text.strip()}
        if difficulty is not None:
            word["difficulty"] = difficulty + index % 3
        if category:
            word["category"] = category
        words.append(word)
    return words


SAMPLE_DECK_SEEDS: list[DeckSeed] = [
    DeckSeed(
        slug="everyday-objects",
        description="Warm-up deck with household things everybody can explain.",
        created_at="2024-03-01T10:00:00+00:00",
        updated_at="2024-03-05T12:00:00+00:00",
        deck={
            "title": "Everyday Objects",
            "author": "Alias Team",
            "language": "en",
            "allowNSFW": False,
            "metadata": {"categories": ["Home", "Starter"], "wordClasses": ["noun"]},
            "words": _words(
                "Toothbrush,Kettle,Umbrella,Pillow,Doorbell,Spoon,Ladder,Mirror,"
                "Candle,Backpack,Scissors,Blanket,Stapler,Teapot,Wallet,Bucket,"
                "Hammer,Sponge,Curtain,Keychain,Lamp,Fork",
                difficulty=1,
                category="Home",
            ),
        },
    ),
    DeckSeed(
        slug="science-night",
        description="Harder terms for players who paid attention in school.",
        created_at="2024-04-10T09:30:00+00:00",
        updated_at="2024-04-12T18:45:00+00:00",
        tags=["Science", "Advanced"],
        deck={
            "title": "Science Night",
            "author": "Alias Team",
            "language": "en",
            "allowNSFW": False,
            "metadata": {"categories": ["Science"], "wordClasses": ["noun"]},
            "words": _words(
                "Photosynthesis,Gravity,Molecule,Telescope,Volcano,Magnet,Fossil,"
                "Electron,Galaxy,Evolution,Microscope,Atmosphere,Enzyme,Comet,"
                "Isotope,Glacier,Neuron,Orbit,Catalyst,Vaccine",
                difficulty=6,
                category="Science",
            ),
        },
    ),
    DeckSeed(
        slug="kukhnya",
        description="Русская колода про кухню и еду.",
        created_at="2024-05-02T08:00:00+00:00",
        updated_at="2024-05-03T08:00:00+00:00",
        deck={
            "title": "Кухня",
            "author": "Команда Alias",
            "language": "ru",
            "allowNSFW": False,
            "metadata": {"categories": ["Еда"], "wordClasses": ["существительное"]},
            "words": _words(
                "Кастрюля,Сковорода,Борщ,Пельмени,Вилка,Тарелка,Холодильник,Духовка,"
                "Половник,Самовар,Блины,Солонка,Кружка,Дуршлаг,Скалка,Терка,Чайник,"
                "Сахарница,Поварешка,Противень",
                difficulty=2,
            ),
        },
    ),
    DeckSeed(
        slug="after-dark",
        description="Party deck for adult groups.",
        created_at="2024-06-01T21:00:00+00:00",
        updated_at="2024-06-01T21:00:00+00:00",
        deck={
            "title": "After Dark",
            "author": "Night Owls",
            "language": "en",
            "allowNSFW": True,
            "metadata": {"categories": ["Party"], "wordClasses": []},
            "words": _words(
                "Hangover,Cocktail,Karaoke,Bartender,Nightclub,Flirt,Tequila,Bouncer,"
                "Afterparty,Pub crawl,Dance floor,Last call,Wingman,Shot glass,"
                "Limousine,Casino,Jackpot,Masquerade,Blind date,Sunrise",
                difficulty=4,
            ),
        },
    ),
]
