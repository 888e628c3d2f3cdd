"""Redis Lua script for atomic token bucket consumption.

The script runs the read, refill, deduct, write and expire steps in one
server-side call, so concurrent consumers of the same meter cannot both
spend the same token.
"""

# KEYS[1]: bucket hash key
# ARGV: bucket_size, refill_time, refill_amount, warning_limit, num_tokens, now, expire_at
# Returns {value, last_update, limited, warning}
CONSUME_SCRIPT = """
    local key = KEYS[1]
    local bucket_size = tonumber(ARGV[1])
    local refill_time = tonumber(ARGV[2])
    local refill_amount = tonumber(ARGV[3])
    local warning_limit = tonumber(ARGV[4])
    local num_tokens = tonumber(ARGV[5])
    local now = tonumber(ARGV[6])
    local expire_at = tonumber(ARGV[7])

    -- Missing buckets start full (lazy initialization)
    local stored = redis.call('HMGET', key, 'value', 'last_update')
    local value = tonumber(stored[1])
    local last_update = tonumber(stored[2])
    if value == nil or last_update == nil then
        value = bucket_size
        last_update = now
    end

    -- Credit whole elapsed periods
    local refill_count = math.floor((now - last_update) / refill_time)
    if refill_count < 0 then
        refill_count = 0
    end
    value = math.min(bucket_size, value + refill_count * refill_amount)

    local limited = 0
    local warning = 0
    if value <= 0 then
        limited = 1
        warning = 1
    else
        value = value - num_tokens
    end
    if value <= warning_limit then
        warning = 1
    end

    local new_last_update = math.min(now, last_update + refill_count * refill_time)
    redis.call('HSET', key, 'value', value, 'last_update', new_last_update)

    redis.call('EXPIREAT', key, expire_at)

    return {value, new_last_update, limited, warning}
"""
