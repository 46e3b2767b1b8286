"""Central registry for Redis Lua scripts used by the tracker.

Scripts are registered once at startup (``register_scripts``) and run via
EVALSHA. Each returns ``{code, payload}``:

    - 0: Stale. Nothing was written; payload is the currently stored value.
    - 1: Saved. Payload is the value that was written.
    - 2: Missing. The key being compared against does not exist; payload is ''.

Amounts and timestamps are unsigned 64-bit values, which Lua numbers cannot
represent exactly. ``save_note_if_newer`` therefore compares fixed-width
decimal strings (see ``monotonic_marker``) instead of numbers.
"""

from __future__ import annotations

from .storage import KeyValueStore

U64_DIGITS = 20

TRACKER_SCRIPTS = {
    "save_note_if_newer": """
        local note_key = KEYS[1]
        local marker_key = KEYS[2]
        local index_key = KEYS[3]
        local all_key = KEYS[4]
        local new_val = ARGV[1]
        local new_marker = ARGV[2]
        local member = ARGV[3]
        local score = ARGV[4]

        local current_marker = redis.call('GET', marker_key)
        if current_marker then
            local cur_amount = string.sub(current_marker, 1, 20)
            local cur_ts = string.sub(current_marker, 22, 41)
            local new_amount = string.sub(new_marker, 1, 20)
            local new_ts = string.sub(new_marker, 22, 41)
            if new_amount < cur_amount or new_ts <= cur_ts then
                local current_raw = redis.call('GET', note_key)
                return {0, current_raw or ''}
            end
        end

        redis.call('SET', note_key, new_val)
        redis.call('SET', marker_key, new_marker)
        redis.call('ZADD', index_key, score, member)
        redis.call('ZADD', all_key, score, member)
        return {1, new_val}
    """,
    "commit_reserve_transition": """
        local reserve_key = KEYS[1]
        local expected_val = ARGV[1]
        local new_val = ARGV[2]

        local current_raw = redis.call('GET', reserve_key)
        if not current_raw then
            return {2, ''}
        end
        if current_raw ~= expected_val then
            return {0, current_raw}
        end
        redis.call('SET', reserve_key, new_val)
        return {1, new_val}
    """,
}


def monotonic_marker(cumulative_amount: int, timestamp: int) -> str:
    """``amount:timestamp`` as zero-padded decimals, ordered lexicographically."""
    return f"{cumulative_amount:0{U64_DIGITS}d}:{timestamp:0{U64_DIGITS}d}"


async def register_scripts(store: KeyValueStore) -> None:
    for name, script in TRACKER_SCRIPTS.items():
        await store.register_script(name, script)


def parse_script_result(result: object) -> tuple[int, str | None]:
    """Split a ``{code, payload}`` reply; empty payloads become None."""
    if not isinstance(result, (list, tuple)) or not result:
        return 0, None
    code = int(result[0]) if result[0] not in (None, "") else 0
    payload = result[1] if len(result) > 1 and result[1] not in (None, "") else None
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    return code, payload
