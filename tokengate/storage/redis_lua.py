"""Redis Lua scripts for distributed rate limiting.

These scripts run the whole token bucket update inside Redis so that
concurrent callers on different processes can never interleave between
reading and writing a bucket.
"""

# Lua script for atomic check-and-consume of one token bucket.
# The caller supplies the timestamp so all processes share one notion of "now"
# for the stored last_refill value. A missing hash is a full bucket.
# Floats are written with %.17g: tostring keeps only 14 significant digits,
# which shifts an epoch timestamp by up to 50us.
# Elapsed time is rounded to the microsecond, matching evaluate() in Python.
# Tokens are returned as a string as well because Redis truncates Lua numbers
# to integers in replies.
CHECK_AND_CONSUME_SCRIPT = """
    local key = KEYS[1]
    local capacity = tonumber(ARGV[1])
    local refill_rate = tonumber(ARGV[2])
    local tokens_requested = tonumber(ARGV[3])
    local now = tonumber(ARGV[4])
    local ttl = tonumber(ARGV[5])

    local bucket = redis.call('HMGET', key, 'tokens', 'last_refill')
    local tokens = tonumber(bucket[1])
    local last_refill = tonumber(bucket[2])

    if not tokens or not last_refill then
        tokens = capacity
        last_refill = now
    end

    -- A clock that moved backwards refills nothing
    local elapsed = math.floor((now - last_refill) * 1000000 + 0.5) / 1000000
    local skew = 0
    if elapsed < 0 then
        skew = -elapsed
        elapsed = 0
    end
    tokens = math.min(capacity, tokens + elapsed * refill_rate)

    local allowed = 0
    local retry_after = 0
    if tokens >= tokens_requested then
        tokens = tokens - tokens_requested
        allowed = 1
    else
        retry_after = math.ceil(((tokens_requested - tokens) / refill_rate) * 1000)
    end

    redis.call('HSET', key,
        'tokens', string.format('%.17g', tokens),
        'last_refill', string.format('%.17g', now))
    redis.call('EXPIRE', key, ttl)

    return {
        allowed,
        math.floor(tokens),
        retry_after,
        string.format('%.17g', tokens),
        string.format('%.17g', skew),
    }
"""
