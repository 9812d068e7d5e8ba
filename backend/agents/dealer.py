"""
Dealer — distributes the configured role pool to every player plus a face-down
center pool.

Algorithm:
  1. Expand enabled, non-disabled role settings into a flat multiset
     (or, in gem mode, draw the requested number of roles per category).
  2. Fewer roles than players → InsufficientRoles; nothing is written.
  3. Shuffle the multiset once; the first N entries go to players, the rest
     become the center pool.
  4. Shuffle the seating independently so join order carries no bias.
  5. Stamp every RoleInstance with the room's resolved art before writing.
  6. The caller persists players + center pool in one whole-document replace.

Shuffles use random.SystemRandom by default (Fisher–Yates over a uniform
source). Tests inject a seeded random.Random.
"""
import logging
import random
from typing import Dict, List, Optional

from models.errors import AlreadyDealt, InsufficientRoles, InvalidRequest, Unauthorized
from models.roles import RoleTemplate, get_role_template, resolve_role_image, role_image_path, roles_in_category
from models.room import DealMode, GameState, RoleInstance, Room

logger = logging.getLogger(__name__)


class Dealer:
    """
    Deals roles for a room. Host only, and only from the lobby unless the
    caller explicitly asks for a re-deal, which clears prior assignments in the
    same write.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.SystemRandom()

    # ── Pool construction ─────────────────────────────────────────────────────

    def build_pool(self, room: Room) -> List[RoleTemplate]:
        if room.config.deal_mode == DealMode.GEMS:
            return self._pool_from_categories(room)
        return self._pool_from_roles(room)

    def _pool_from_roles(self, room: Room) -> List[RoleTemplate]:
        pool: List[RoleTemplate] = []
        for setting in room.config.role_settings:
            template = get_role_template(setting.role_name)
            if template is None or template.always_disabled:
                continue
            pool.extend([template] * setting.enabled_count)
        return pool

    def _pool_from_categories(self, room: Room) -> List[RoleTemplate]:
        """Each category contributes up to its requested count of distinct eligible roles."""
        pool: List[RoleTemplate] = []
        for category in room.config.gem_categories:
            if category.count <= 0:
                continue
            eligible = []
            for template in roles_in_category(category.category_name):
                setting = room.config.role_setting(template.name)
                if template.always_disabled or (setting is not None and setting.is_disabled):
                    continue
                eligible.append(template)
            take = min(category.count, len(eligible))
            if take < category.count:
                logger.info(
                    "[%s] gem %s requested %d roles, only %d eligible",
                    room.id, category.category_name, category.count, len(eligible),
                )
            pool.extend(self.rng.sample(eligible, take))
        return pool

    # ── Deal ──────────────────────────────────────────────────────────────────

    def clear(self, room: Room) -> Room:
        for player in room.players:
            player.assigned_roles = []
        room.config.center_pool = []
        room.config.game_state = GameState.LOBBY
        room.config.current_day = 0
        return room

    def apply_deal(self, room: Room, requester_identity: str, redeal: bool = False) -> Room:
        """
        Deal onto `room` in place and return it.
        Raises before touching the room when the deal is not allowed.
        """
        if not room.is_host(requester_identity):
            raise Unauthorized("Only the host can start the game.")
        if not room.players:
            raise InvalidRequest("Cannot start game: No players in the room.")
        if room.is_dealt and not redeal:
            raise AlreadyDealt(room.id)

        pool = self.build_pool(room)
        n_players = len(room.players)
        if len(pool) < n_players:
            raise InsufficientRoles(needed=n_players, available=len(pool))

        if redeal:
            self.clear(room)

        self.rng.shuffle(pool)
        dealt, center = pool[:n_players], pool[n_players:]

        # Seat order is shuffled separately; the players list itself keeps join
        # order because host succession depends on it.
        seats = list(range(n_players))
        self.rng.shuffle(seats)

        image_map = self._complete_image_map(room)
        for template, seat in zip(dealt, seats):
            room.players[seat].assigned_roles = [
                RoleInstance.from_template(template, resolve_role_image(template.name, image_map))
            ]
        room.config.center_pool = [
            RoleInstance.from_template(t, resolve_role_image(t.name, image_map)) for t in center
        ]
        room.config.game_state = GameState.NIGHT
        room.config.current_day = 1

        logger.info(
            "[%s] Dealt %d roles to %d players, %d to the center.",
            room.id, len(dealt), n_players, len(center),
        )
        return room

    def _complete_image_map(self, room: Room) -> Dict[str, str]:
        """Fill art for roles the map doesn't know yet so every client agrees."""
        image_map = room.config.role_image_map
        for setting in room.config.role_settings:
            template = get_role_template(setting.role_name)
            if template and setting.role_name not in image_map:
                image_map[setting.role_name] = role_image_path(
                    template.name, self.rng.randint(1, max(1, template.variant_count))
                )
        return image_map

    def apply_reset(self, room: Room, requester_identity: str) -> Room:
        if not room.is_host(requester_identity):
            raise Unauthorized("Only the host can reset the game.")
        logger.info("[%s] Reset to lobby.", room.id)
        return self.clear(room)
