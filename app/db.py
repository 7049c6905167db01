import pymysql

from app.config import DB_HOST, DB_PORT, DB_USER, DB_PASSWORD, DB_NAME

DB_CONFIG = {
    "host": DB_HOST,
    "port": DB_PORT,
    "user": DB_USER,
    "password": DB_PASSWORD,
    "database": DB_NAME,
}


class ConnectionWrapper:
    def __init__(self, conn):
        self._conn = conn

    def cursor(self, dictionary=False):
        if dictionary:
            return self._conn.cursor(pymysql.cursors.DictCursor)
        return self._conn.cursor()

    def savepoint(self, name: str):
        with self._conn.cursor() as cursor:
            cursor.execute(f"SAVEPOINT {name}")

    def rollback_to_savepoint(self, name: str):
        with self._conn.cursor() as cursor:
            cursor.execute(f"ROLLBACK TO SAVEPOINT {name}")

    def release_savepoint(self, name: str):
        with self._conn.cursor() as cursor:
            cursor.execute(f"RELEASE SAVEPOINT {name}")

    def commit(self):
        return self._conn.commit()

    def rollback(self):
        return self._conn.rollback()

    def close(self):
        return self._conn.close()


def get_db_connection():
    """Get MySQL connection with dictionary cursor support.

    Autocommit is off: every request runs in one transaction that the
    router commits or rolls back.
    """
    conn = pymysql.connect(
        host=DB_CONFIG["host"],
        port=DB_CONFIG["port"],
        user=DB_CONFIG["user"],
        password=DB_CONFIG["password"],
        database=DB_CONFIG["database"],
        charset="utf8mb4",
        cursorclass=pymysql.cursors.DictCursor,
        autocommit=False,
    )
    return ConnectionWrapper(conn)
