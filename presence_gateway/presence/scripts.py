"""
Server-side membership transactions.

Both scripts take the same four keys (see ``KeyScheme.membership_keys``):

    KEYS[1] = data   KEYS[2] = pid   KEYS[3] = cids   KEYS[4] = pids

Redis runs a script to completion before serving any other command, so the
existence / emptiness checks below always agree with the state they mutate.
"""

# ARGV[1] = connection_id, ARGV[2] = identity, ARGV[3] = payload, ARGV[4] = now (ms)
# Returns 1 if the identity already had connections in this channel, else 0.
REGISTER_MEMBERSHIP = r"""
local existed = redis.call("EXISTS", KEYS[3])

redis.call("SET", KEYS[1], ARGV[3])
redis.call("SET", KEYS[2], ARGV[2])
redis.call("ZADD", KEYS[3], ARGV[4], ARGV[1])
redis.call("ZADD", KEYS[4], ARGV[4], ARGV[2])

return existed
"""

# ARGV[1] = connection_id, ARGV[2] = identity
# Returns 1 if other connections remain, 0 if this was the last one,
# -1 if the connection was not a member (nothing to do).
DEREGISTER_MEMBERSHIP = r"""
if redis.call("GET", KEYS[2]) == ARGV[2] then
  redis.call("DEL", KEYS[2])
end

if redis.call("ZREM", KEYS[3], ARGV[1]) == 0 then
  return -1
end

if redis.call("EXISTS", KEYS[3]) == 1 then
  return 1
end

redis.call("ZREM", KEYS[4], ARGV[2])
redis.call("DEL", KEYS[1])

return 0
"""

ALREADY_PRESENT = 1
FIRST_JOIN = 0

STILL_PRESENT = 1
LAST_LEFT = 0
NOT_A_MEMBER = -1
