"""
PostgreSQL backend through psycopg.

Connections run in autocommit mode; each verb call is its own transaction.
"""
import logging
from typing import TYPE_CHECKING, Any

import psycopg
import sqlalchemy as sa
from sqlapi.factory.base import register_factory
from sqlapi.factory.engine import EngineFactory

if TYPE_CHECKING:
    from sqlapi.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_factory('postgresql')
class PostgresFactory(EngineFactory):
    """PostgreSQL operations.
    """

    version = psycopg.__version__

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        query = {}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)
        if options.appname:
            query['application_name'] = options.appname

        return sa.URL.create(
            drivername='postgresql+psycopg',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port,
            database=options.database,
            query=query
        )

    def configure_connection(self, raw_conn: Any) -> None:
        """Enable autocommit on the psycopg connection.
        """
        raw_conn.autocommit = True
        logger.debug('Configured PostgreSQL connection')

    @classmethod
    def get_required_options(cls) -> list[str]:
        return ['hostname', 'username', 'password', 'database', 'port', 'timeout']
