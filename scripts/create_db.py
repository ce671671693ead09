import os
from urllib.parse import urlparse

import psycopg2
from dotenv import load_dotenv
from psycopg2 import sql

load_dotenv()


def create_database():
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("DATABASE_URL not found in .env")
        return
    if not db_url.startswith("postgresql"):
        print("DATABASE_URL is not PostgreSQL; nothing to create.")
        return

    result = urlparse(db_url)
    database = result.path[1:]

    # Connect to the default 'postgres' database to create the target one
    conn = psycopg2.connect(
        database="postgres",
        user=result.username,
        password=result.password,
        host=result.hostname,
        port=result.port,
    )
    conn.autocommit = True
    try:
        with conn.cursor() as cursor:
            cursor.execute("SELECT 1 FROM pg_catalog.pg_database WHERE datname = %s", (database,))
            if cursor.fetchone():
                print(f"Database '{database}' already exists.")
                return
            print(f"Creating database '{database}'...")
            cursor.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(database)))
            print(f"Database '{database}' created. Run `python -m upkeep.database.init_db` next.")
    finally:
        conn.close()


if __name__ == "__main__":
    create_database()
