import os

import psycopg2
from dotenv import load_dotenv

SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "backend", "app", "core", "schema.sql")


def run_migrations() -> bool:
    # 中文注释: 连接串只从环境变量读取（DATABASE_URL / SUPABASE_DB_URL），不要写进代码
    load_dotenv()
    dsn = (os.environ.get("DATABASE_URL") or os.environ.get("SUPABASE_DB_URL") or "").strip()
    if not dsn:
        print("❌ DATABASE_URL (or SUPABASE_DB_URL) is not set")
        return False

    print("🚀 Connecting to database...")
    try:
        conn = psycopg2.connect(dsn)
        conn.autocommit = True
        try:
            print("📄 Reading schema.sql...")
            with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
                schema_sql = f.read()

            print("⚡ Executing migrations...")
            with conn.cursor() as cur:
                cur.execute(schema_sql)
        finally:
            conn.close()
    except Exception as e:
        print(f"❌ Migration failed: {e}")
        return False

    print("✅ Database migration completed successfully!")
    return True


if __name__ == "__main__":
    raise SystemExit(0 if run_migrations() else 1)
