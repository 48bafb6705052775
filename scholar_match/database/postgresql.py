import ssl
import asyncpg


class PostgreSQLManager:
    def __init__(
        self,
        host,
        port,
        user,
        password,
        database,
        use_ssl=False,
        min_connections=1,
        max_connections=20,
        command_timeout=10,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.database = database
        self.use_ssl = use_ssl
        self.min_connections = min_connections
        self.max_connections = max_connections
        self.command_timeout = command_timeout
        self.connection_pool = None

    @classmethod
    def from_settings(cls, settings, **kwargs):
        return cls(
            host=settings.postgres_host,
            port=int(settings.postgres_port) if settings.postgres_port else 5432,
            user=settings.postgres_user,
            password=settings.postgres_password,
            database=settings.postgres_db,
            use_ssl=settings.postgres_ssl,
            command_timeout=settings.store_timeout_seconds,
            **kwargs,
        )

    async def create_pool(self):
        if self.connection_pool is None:
            ssl_context = ssl.create_default_context() if self.use_ssl else None
            self.connection_pool = await asyncpg.create_pool(
                host=self.host,
                port=self.port,
                user=self.user,
                password=self.password,
                database=self.database,
                ssl=ssl_context,
                min_size=self.min_connections,
                max_size=self.max_connections,
                command_timeout=self.command_timeout,
                server_settings={
                    'application_name': 'scholar_match',
                    'tcp_keepalives_idle': '600',
                    'tcp_keepalives_interval': '30',
                    'tcp_keepalives_count': '3',
                }
            )
        return self.connection_pool

    async def fetch(self, query, *params, timeout=None):
        pool = await self.create_pool()
        async with pool.acquire() as conn:
            return await conn.fetch(query, *params, timeout=timeout)

    async def health(self) -> bool:
        pool = await self.create_pool()
        async with pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1

    async def close(self):
        if self.connection_pool:
            await self.connection_pool.close()
            self.connection_pool = None
