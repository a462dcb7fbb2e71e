"""Redis Lua script for GCRA rate limiting.

The script runs the read-decide-write sequence of ``evaluator.evaluate``
atomically inside Redis, so concurrent processes sharing a key can never
lose an update or over-admit.

Time comes from Redis TIME, never from the client. TIME returns whole
seconds and microseconds; the script folds them into one double relative
to GCRA_EPOCH to keep the number small. A double 1e8 s after the epoch
(March 2027) resolves about 1.5e-8 s, and 1.2e-7 s at 1e9 s (September
2055); it stays finer than the microseconds TIME reports until about
8.6e9 s. Stored TATs keep full double precision: Redis writes Lua numbers
passed to SET with 17 significant digits. Only the durations in the reply
go through tostring (14 digits), and they are at most a few periods long.
Changing the epoch changes the script SHA and invalidates stored TATs, so
do it together with a key prefix change.
"""

# 2024-01-01T00:00:00Z
GCRA_EPOCH = 1704067200

# KEYS[1] = store key
# ARGV[1] = burst
# ARGV[2] = rate
# ARGV[3] = period in seconds
# ARGV[4] = cost (0 inspects without consuming)
# ARGV[5] = mode, "0" all-or-nothing, "1" at-most
# ARGV[6] = TTL margin in seconds
# Returns: {allowed, remaining, tostring(retry_after), tostring(reset_after)}
GCRA_SCRIPT = """
local key = KEYS[1]
local burst = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local period = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])
local at_most = ARGV[5] == "1"
local ttl_margin = tonumber(ARGV[6])

local emission_interval = period / rate
local burst_offset = emission_interval * burst

local now = redis.call("TIME")
now = (now[1] - %(epoch)d) + (now[2] / 1000000)

local tat = redis.call("GET", key)
if not tat then
  tat = now
else
  tat = math.max(tonumber(tat), now)
end

local diff = now - (tat - burst_offset)
local available = math.floor(diff / emission_interval + 0.5)

if cost == 0 then
  local retry_after = -1
  if available < 1 then
    retry_after = emission_interval - diff
  end
  return {0, math.max(available, 0), tostring(retry_after), tostring(tat - now)}
end

if at_most then
  cost = math.min(cost, math.max(available, 0))
  if cost == 0 then
    return {0, 0, tostring(emission_interval - diff), tostring(tat - now)}
  end
elseif available < cost then
  return {0, 0, tostring(emission_interval * cost - diff), tostring(tat - now)}
end

local new_tat = tat + emission_interval * cost
local reset_after = new_tat - now
redis.call("SET", key, new_tat, "EX", math.ceil(reset_after) + ttl_margin)

return {cost, available - cost, "-1", tostring(reset_after)}
""" % {"epoch": GCRA_EPOCH}
