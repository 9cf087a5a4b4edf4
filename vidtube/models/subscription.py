"""
VidTube — models/subscription.py
─────────────────────────────────────────────────────────────────
Subscriptions table: directed edge subscriber → channel.
Both ends are users.
─────────────────────────────────────────────────────────────────
"""

SUBSCRIPTIONS_TABLE = """
    CREATE TABLE IF NOT EXISTS subscriptions (
        id             TEXT PRIMARY KEY,
        subscriber_id  TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        channel_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        created_at     TEXT NOT NULL,
        UNIQUE (subscriber_id, channel_id)
    );

    CREATE INDEX IF NOT EXISTS idx_subs_channel
        ON subscriptions(channel_id);

    CREATE INDEX IF NOT EXISTS idx_subs_subscriber
        ON subscriptions(subscriber_id);
"""
