# clerk/modules/competition_lifecycle/services/metrics.py

import random
from typing import Optional
from clerk.modules.competition_lifecycle.models import CompetitionSettings, CompetitionType, PollOption

# Wise Old Man metric keys and their display names, per category.
SKILL_METRICS: dict[str, str] = {
    "overall": "Overall",
    "attack": "Attack",
    "defence": "Defence",
    "strength": "Strength",
    "hitpoints": "Hitpoints",
    "ranged": "Ranged",
    "prayer": "Prayer",
    "magic": "Magic",
    "cooking": "Cooking",
    "woodcutting": "Woodcutting",
    "fletching": "Fletching",
    "fishing": "Fishing",
    "firemaking": "Firemaking",
    "crafting": "Crafting",
    "smithing": "Smithing",
    "mining": "Mining",
    "herblore": "Herblore",
    "agility": "Agility",
    "thieving": "Thieving",
    "slayer": "Slayer",
    "farming": "Farming",
    "runecrafting": "Runecrafting",
    "hunter": "Hunter",
    "construction": "Construction",
}

BOSS_METRICS: dict[str, str] = {
    "abyssal_sire": "Abyssal Sire",
    "alchemical_hydra": "Alchemical Hydra",
    "amoxliatl": "Amoxliatl",
    "araxxor": "Araxxor",
    "artio": "Artio",
    "barrows_chests": "Barrows Chests",
    "bryophyta": "Bryophyta",
    "callisto": "Callisto",
    "calvarion": "Calvar'ion",
    "cerberus": "Cerberus",
    "chambers_of_xeric": "Chambers Of Xeric",
    "chambers_of_xeric_challenge_mode": "Chambers Of Xeric (CM)",
    "chaos_elemental": "Chaos Elemental",
    "chaos_fanatic": "Chaos Fanatic",
    "commander_zilyana": "Commander Zilyana",
    "corporeal_beast": "Corporeal Beast",
    "crazy_archaeologist": "Crazy Archaeologist",
    "dagannoth_prime": "Dagannoth Prime",
    "dagannoth_rex": "Dagannoth Rex",
    "dagannoth_supreme": "Dagannoth Supreme",
    "deranged_archaeologist": "Deranged Archaeologist",
    "duke_sucellus": "Duke Sucellus",
    "general_graardor": "General Graardor",
    "giant_mole": "Giant Mole",
    "grotesque_guardians": "Grotesque Guardians",
    "hespori": "Hespori",
    "kalphite_queen": "Kalphite Queen",
    "king_black_dragon": "King Black Dragon",
    "kraken": "Kraken",
    "kreearra": "Kree'Arra",
    "kril_tsutsaroth": "K'ril Tsutsaroth",
    "lunar_chests": "Lunar Chests",
    "mimic": "Mimic",
    "nex": "Nex",
    "nightmare": "The Nightmare",
    "phosanis_nightmare": "Phosani's Nightmare",
    "obor": "Obor",
    "phantom_muspah": "Phantom Muspah",
    "sarachnis": "Sarachnis",
    "scorpia": "Scorpia",
    "scurrius": "Scurrius",
    "skotizo": "Skotizo",
    "sol_heredit": "Sol Heredit",
    "spindel": "Spindel",
    "tempoross": "Tempoross",
    "the_gauntlet": "The Gauntlet",
    "the_corrupted_gauntlet": "The Corrupted Gauntlet",
    "the_hueycoatl": "The Hueycoatl",
    "the_leviathan": "The Leviathan",
    "the_whisperer": "The Whisperer",
    "theatre_of_blood": "Theatre Of Blood",
    "theatre_of_blood_hard_mode": "Theatre Of Blood (HM)",
    "thermonuclear_smoke_devil": "Thermonuclear Smoke Devil",
    "tombs_of_amascut": "Tombs Of Amascut",
    "tombs_of_amascut_expert": "Tombs Of Amascut (Expert Mode)",
    "tzkal_zuk": "TzKal-Zuk",
    "tztok_jad": "TzTok-Jad",
    "vardorvis": "Vardorvis",
    "venenatis": "Venenatis",
    "vetion": "Vet'ion",
    "vorkath": "Vorkath",
    "wintertodt": "Wintertodt",
    "zalcano": "Zalcano",
    "zulrah": "Zulrah",
}

ALL_METRICS: dict[str, str] = {**SKILL_METRICS, **BOSS_METRICS}


def metrics_for_type(competition_type: CompetitionType) -> dict[str, str]:
    if competition_type is CompetitionType.SKILL:
        return SKILL_METRICS
    return BOSS_METRICS


def display_name(metric_key: str) -> str:
    return ALL_METRICS.get(metric_key, metric_key)


def resolve_metric_key(label: str) -> Optional[str]:
    """Map a poll option's display label back to its metric key."""
    for key, name in ALL_METRICS.items():
        if name == label:
            return key
    # labels may also be raw keys, e.g. for linked competitions
    normalized = label.strip().lower()
    return normalized if normalized in ALL_METRICS else None


def build_poll_options(
    competition_type: CompetitionType,
    settings: Optional[CompetitionSettings],
    count: int = 10,
    rng: Optional[random.Random] = None,
) -> list[PollOption]:
    """
    Pick up to `count` metrics of the given type, skipping the guild's
    blacklist and the recently chosen metrics, in random order.
    """
    excluded: set[str] = set()
    if settings:
        excluded.update(k.lower() for k in settings.blacklist_for(competition_type))
        excluded.update(k.lower() for k in settings.last_chosen_metrics)

    candidates = [key for key in metrics_for_type(competition_type) if key.lower() not in excluded]
    (rng or random).shuffle(candidates)
    return [PollOption(label=display_name(key), key=key) for key in candidates[:count]]


def emoji_name_for(competition_type: CompetitionType, metric_key: str) -> str:
    """Application emoji naming convention: skills carry a `_skill` suffix, bosses use the bare key."""
    if competition_type is CompetitionType.SKILL:
        return f"{metric_key.lower()}_skill"
    return metric_key.lower()
