import sqlite3

import pandas as pd

from agromet.settings import resolve_db_path


def main():
    conn = sqlite3.connect(resolve_db_path())
    try:
        df = pd.read_sql_query(
            """
            SELECT s.id AS station_id, s.name, m.created_at, m.temperature, m.humidity,
                   m.battery_voltage, m.signal_strength
            FROM stations s
            LEFT JOIN measurements m
              ON m.station_id = s.id
             AND m.created_at = (SELECT MAX(created_at) FROM measurements WHERE station_id = s.id)
            ORDER BY s.id
            """,
            conn,
        )
        print("Latest reading per station:")
        print(df.to_string(index=False))
    except Exception as e:
        print(f"An error occurred: {e}")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
