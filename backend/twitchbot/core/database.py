import asyncpg


async def setup_database_schema(connection: asyncpg.Connection) -> None:
    """Initialize database tables and triggers."""
    await connection.execute(
        """CREATE TABLE IF NOT EXISTS tokens(
            user_id TEXT PRIMARY KEY,
            token TEXT NOT NULL,
            refresh TEXT NOT NULL,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )"""
    )

    await connection.execute(
        """CREATE TABLE IF NOT EXISTS channels(
            channel_id TEXT PRIMARY KEY,
            channel_name TEXT NOT NULL UNIQUE,
            enabled BOOLEAN DEFAULT true,
            muted BOOLEAN NOT NULL DEFAULT false,
            disabled_commands TEXT[] NOT NULL DEFAULT '{}',
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )"""
    )

    await connection.execute(
        """CREATE TABLE IF NOT EXISTS chat_commands(
            id SERIAL PRIMARY KEY,
            channel_id TEXT REFERENCES channels(channel_id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            aliases TEXT[] NOT NULL DEFAULT '{}',
            regex TEXT,
            response TEXT NOT NULL DEFAULT '',
            response_type TEXT NOT NULL DEFAULT 'say'
                CHECK (response_type IN ('say', 'mention', 'reply')),
            enabled BOOLEAN NOT NULL DEFAULT true,
            access_level TEXT NOT NULL DEFAULT 'EVERYONE',
            global_cooldown INTEGER NOT NULL DEFAULT 0 CHECK (global_cooldown >= 0),
            user_cooldown INTEGER NOT NULL DEFAULT 0 CHECK (user_cooldown >= 0),
            limit_to_user TEXT,
            use_count INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )"""
    )

    # NULL channel_id means a global command; NULLS NOT DISTINCT keeps those unique too.
    await connection.execute(
        """CREATE UNIQUE INDEX IF NOT EXISTS chat_commands_channel_name_idx
            ON chat_commands (channel_id, name) NULLS NOT DISTINCT"""
    )

    await connection.execute(
        """CREATE TABLE IF NOT EXISTS command_overrides(
            channel_id TEXT NOT NULL REFERENCES channels(channel_id) ON DELETE CASCADE,
            command_name TEXT NOT NULL,
            access_level TEXT NOT NULL,
            PRIMARY KEY (channel_id, command_name)
        )"""
    )

    await connection.execute(
        """CREATE TABLE IF NOT EXISTS regulars(
            user_id TEXT PRIMARY KEY,
            username TEXT NOT NULL,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        )"""
    )

    await connection.execute(
        """
        CREATE OR REPLACE FUNCTION notify_config_change()
        RETURNS TRIGGER AS $$
        DECLARE
            row_data JSON;
        BEGIN
            IF TG_OP = 'DELETE' THEN
                row_data := row_to_json(OLD);
            ELSE
                row_data := row_to_json(NEW);
            END IF;

            PERFORM pg_notify(
                'config_change',
                json_build_object(
                    'table', TG_TABLE_NAME,
                    'channel_id', row_data->>'channel_id'
                )::text
            );

            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
        """
    )

    for table in ("channels", "chat_commands", "command_overrides", "regulars"):
        await connection.execute(
            f"""
            DROP TRIGGER IF EXISTS {table}_config_change_trigger ON {table};
            CREATE TRIGGER {table}_config_change_trigger
            AFTER INSERT OR UPDATE OR DELETE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION notify_config_change();
            """
        )
