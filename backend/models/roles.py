"""
Role catalog — every role a room can be configured with.

The catalog is static; each room copies it into `RoomConfig.role_settings` at
creation time and resolves one art variant per role into `role_image_map` so
every client renders the same card.
"""
import random
from typing import Dict, List, Optional

from pydantic import BaseModel


ROLE_IMAGE_BASE_PATH = "/images/roles/"
GEM_IMAGE_BASE_PATH = "/images/gems/"
NOBODY_IMAGE_PATH = f"{ROLE_IMAGE_BASE_PATH}nobody-v-1.jpeg"

ROOM_BACKGROUNDS: List[str] = [
    "https://i.imgur.com/hvBtKgM.jpeg",
    "https://i.imgur.com/QIxZror.jpeg",
    "https://i.imgur.com/4wQ8gYe.jpeg",
]


class GemCategory(BaseModel):
    name: str
    color: str
    image: str
    dealable: bool = True


GEM_CATEGORIES: Dict[str, GemCategory] = {
    "Townfolks": GemCategory(name="Townfolks", color="#2ecc71", image=f"{GEM_IMAGE_BASE_PATH}townfolks.jpg"),
    "Werewolfs": GemCategory(name="Werewolfs", color="#e74c3c", image=f"{GEM_IMAGE_BASE_PATH}werewolves.jpg"),
    "Specials": GemCategory(name="Specials", color="#f39c12", image=f"{GEM_IMAGE_BASE_PATH}specials.jpg"),
    "Vampires": GemCategory(name="Vampires", color="#9b59b6", image=f"{GEM_IMAGE_BASE_PATH}vampires.jpg"),
    "Zombies": GemCategory(name="Zombies", color="#55B4B4", image=f"{GEM_IMAGE_BASE_PATH}zombies.jpg"),
    "None": GemCategory(name="None", color="#95a5a6", image=f"{GEM_IMAGE_BASE_PATH}none.jpg", dealable=False),
}


class RoleTemplate(BaseModel):
    name: str
    description: str
    gem: str
    rough_gem: str               # What an alignment-reading role sees
    variant_count: int = 1       # Number of art variants shipped for this role
    default_count: int = 0
    always_disabled: bool = False


def _role(
    name: str,
    gem: str,
    description: str,
    rough_gem: Optional[str] = None,
    variants: int = 1,
    default: int = 0,
    locked: bool = False,
) -> RoleTemplate:
    return RoleTemplate(
        name=name,
        description=description,
        gem=gem,
        rough_gem=rough_gem or gem,
        variant_count=variants,
        default_count=default,
        always_disabled=locked,
    )


# ── Catalog ───────────────────────────────────────────────────────────────────

ROLE_TEMPLATES: List[RoleTemplate] = [
    # Moderation / placeholders
    _role("Nobody", "None", "Cannot be capable to do things", rough_gem="Townfolks", variants=5, locked=True),
    _role("Narrator", "None", "Moderate the game", rough_gem="Townfolks", locked=True),

    # Townfolks
    _role("Villager", "Townfolks", "Has no special night ability. Wins by accurately identifying and lynching Werewolves."),
    _role("Seer", "Townfolks", "Each night, chooses a player to learn their alignment which is Townfolks/Werewolfs."),
    _role("Aura Seer", "Townfolks", "Each night, chooses a player to learn their role type which is Wolves/Townfolks/Specials."),
    _role("Apprentice Seer", "Townfolks", "May be less powerful or gain power if the primary Seer dies."),
    _role("Restricted Seer", "Townfolks", "Two times per game, at night, chooses a player to learn their alignment."),
    _role("Prophet", "Townfolks", "Each night, learns a player's alignment. Has a one time ability to reveal the role of a player."),
    _role("Doctor", "Townfolks", "One time per game, chooses one player to revive from death."),
    _role("Nurse", "Townfolks", "Gains the Doctor's ability if the Doctor dies."),
    _role("Bodyguard", "Townfolks", "Each night, chooses one player to protect; may die in their place if attacked."),
    _role("Mason", "Townfolks", "Knows all other Masons, confirming their good alignment to each other.", locked=True),
    _role("Hunter", "Townfolks", "If eliminated, immediately chooses another player to eliminate."),
    _role("Troublemaker", "Townfolks", "One time per game, at night, swaps the roles of two other players."),
    _role("Robber", "Townfolks", "One time per game, swaps their own role card with another player's and views it."),
    _role("Drunk", "Townfolks", "Swaps a role card with a card from the center without looking."),
    _role("Bartender", "Townfolks", "One time per game, swaps a center card with another player's."),
    _role("Cupid", "Townfolks", "On the first night, chooses two lovers. If one dies, the other dies as well."),
    _role("Witch", "Townfolks", "Possesses two single-use potions: one to save a player, one to kill any player."),
    _role("Jailer", "Townfolks", "Each night, jails a player, blocking their ability and protecting them."),
    _role("Prince", "Townfolks", "If nominated for lynching, can reveal their role to survive that lynching."),
    _role("Mayor", "Townfolks", "Their vote counts as two during the day.", locked=True),
    _role("Ghost", "Townfolks", "Dies on the first night, then gives limited clues from beyond the grave."),
    _role("Lycanthrope", "Townfolks", "Appears as a Werewolf to the Seer but is loyal to the village.", rough_gem="Werewolfs"),
    _role("Magician", "Townfolks", "Has one-time abilities to kill or revive a player at night."),
    _role("Spellcaster", "Townfolks", "At night, chooses a player who cannot speak during the following day.", variants=4),
    _role("Bodybuilder", "Townfolks", "Survives one additional night attack from Werewolves."),
    _role("Martyr", "Townfolks", "May die in place of a player nominated for lynching.", locked=True),
    _role("Beholder", "Townfolks", "Wakes up at night with seers to learn who the Seers are."),
    _role("Defender", "Townfolks", "Protects a player from Werewolf attacks, not the same person twice in a row."),
    _role("Sheriff", "Townfolks", "During daytime, can force a vote on a player. Can choose a Deputy."),
    _role("Deputy", "Townfolks", "Gains the Sheriff's abilities if the Sheriff dies."),
    _role("Apothecary", "Townfolks", "Learns who will be killed each night; one potion to save, one to intensify."),
    _role("Cursed", "Townfolks", "Transforms into a Werewolf instead of dying when attacked by one.", locked=True),
    _role("Diseased", "Townfolks", "If killed by Werewolves, they cannot kill on the following night."),
    _role("Spirit Medium", "Townfolks", "Dead players can write notes to the Spirit Medium."),
    _role("Undertaker", "Townfolks", "One time per game, digs a grave to see the role of a dead player."),
    _role("Old Hag", "Townfolks", "At night, chooses a player who must leave the village the next day."),
    _role("Old Man", "Townfolks", "Will die within 3 days."),
    _role("Necromancer", "Townfolks", "Two times per game, copies an ability from a player.", rough_gem="Werewolfs"),
    _role("Dodger", "Townfolks", "One time per game, redirects an effect received at night to another player."),
    _role("Sponge", "Townfolks", "If voted out, the player with the next highest vote count is lynched instead."),
    _role("Spellbinder", "Townfolks", "Wakes first and silences one player's ability for the night."),
    _role("Vigilante", "Townfolks", "One time kill at night; dies of guilt if the target was a townfolk."),
    _role("Squire", "Townfolks", "Knows who the Werewolves are, wins if the werewolves win.", rough_gem="Werewolfs"),
    _role("Voodoo Lady", "Townfolks", "Curses a player; if that player nominates anyone, they die.", rough_gem="Werewolfs"),

    # Werewolfs
    _role("Werewolf", "Werewolfs", "Each night, collectively choose one player to eliminate.", default=2),
    _role("Alpha Werewolf", "Werewolfs", "Eliminates with the pack and can turn a non-werewolf into one."),
    _role("Dire Wolf", "Werewolfs", "Picks a companion on the first night and dies if that companion dies."),
    _role("Guardian Wolf", "Werewolfs", "One time per game, protects a fellow werewolf from dying."),
    _role("Minion", "Werewolfs", "Knows the Werewolves, but they do not know the Minion."),
    _role("Mystic Wolf", "Werewolfs", "Two times per game, learns the role of a non-werewolf character."),
    _role("Wolf Cub", "Werewolfs", "Cannot vote to kill, but grows into a Werewolf after 3 days."),
    _role("Nightmare Werewolf", "Werewolfs", "Imposes a nightmare that redirects a player's ability to a random player."),
    _role("Dream Wolf", "Werewolfs", "Does not know the other Werewolves, but they know the Dream Wolf."),

    # Specials
    _role("Tanner", "Specials", "Wins only if they are lynched by the villagers.", rough_gem="Townfolks"),
    _role("Doppelgänger", "Specials", "Takes on the role of a chosen player when that player dies.", rough_gem="Townfolks"),
    _role("The Fool", "Specials", "Wins only by manipulating the village into lynching them.", rough_gem="Townfolks"),
    _role("Bookie", "Specials", "Bets each night on who will be lynched; wins on a correct bet.", rough_gem="Townfolks"),
    _role("Sleuth", "Specials", "Can reveal themselves to guess roles; wins alone on success.", rough_gem="Townfolks"),
    _role("Pacifist", "Specials", "Can double another player's vote or void their own.", rough_gem="Townfolks"),
    _role("Nostradamus", "Specials", "Looks at cards once; the last one seen decides their team.", rough_gem="Townfolks"),
    _role("Reaper", "Specials", "A standalone killer who wins among the last two alive.", rough_gem="Werewolfs"),
    _role("Cult Leader", "Specials", "Adds a player to the cult each night; wins when all are members.", rough_gem="Werewolfs"),

    # Vampires / Zombies
    _role("Vampire", "Vampires", "Collectively converts a player each night; wins when all are vampires.", rough_gem="Townfolks"),
    _role("Zombie", "Zombies", "Collectively turns a player into a zombie; wins when all are zombies.", rough_gem="Townfolks", locked=True),
    _role("Infected", "Zombies", "Starts as a villager and rises as a zombie when killed.", rough_gem="Townfolks", locked=True),
]

_TEMPLATES_BY_NAME: Dict[str, RoleTemplate] = {r.name: r for r in ROLE_TEMPLATES}


def get_role_template(role_name: str) -> Optional[RoleTemplate]:
    return _TEMPLATES_BY_NAME.get(role_name)


def roles_in_category(category_name: str) -> List[RoleTemplate]:
    return [r for r in ROLE_TEMPLATES if r.gem == category_name]


def dealable_categories() -> List[str]:
    return [name for name, gem in GEM_CATEGORIES.items() if gem.dealable]


# ── Art variants ──────────────────────────────────────────────────────────────

def role_image_path(role_name: str, variant: int = 1) -> str:
    slug = role_name.lower().replace(" ", "-")
    return f"{ROLE_IMAGE_BASE_PATH}{slug}-v-{variant}.jpeg"


def build_role_image_map(rng: random.Random) -> Dict[str, str]:
    """Pick one art variant per role. Generated once per room and stored in it."""
    return {
        r.name: role_image_path(r.name, rng.randint(1, max(1, r.variant_count)))
        for r in ROLE_TEMPLATES
    }


def resolve_role_image(role_name: str, image_map: Dict[str, str]) -> str:
    """Stored variant first, then variant 1, then the Nobody card for unknown roles."""
    chosen = image_map.get(role_name)
    if chosen:
        return chosen
    if role_name in _TEMPLATES_BY_NAME:
        return role_image_path(role_name)
    return NOBODY_IMAGE_PATH
