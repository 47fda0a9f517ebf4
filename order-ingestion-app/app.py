# order-ingestion-app/app.py

import os
import traceback
from flask import Flask, jsonify
from flask_cors import CORS
import sqlalchemy
from dotenv import load_dotenv
from datetime import datetime, timezone, date
from decimal import Decimal

from app_utils import parse_bool

print("DEBUG APP_SETUP: Imports done.")

try:
    load_dotenv()
    print("DEBUG APP_SETUP: load_dotenv finished.")
except Exception as e_dotenv:
    print(f"ERROR APP_SETUP: load_dotenv failed: {e_dotenv}")

app = Flask(__name__)
print("DEBUG APP_SETUP: Flask object created.")

allowed_origin = os.environ.get('ALLOWED_CORS_ORIGIN')
if allowed_origin:
    print(f"DEBUG APP_SETUP: CORS configured for origin: {allowed_origin}")
    CORS(app,
         resources={r"/api/*": {"origins": [allowed_origin]}},
         methods=["GET", "POST", "PUT", "OPTIONS"],
         allow_headers=["Content-Type", "Authorization"],
         supports_credentials=True
    )
else:
    print("WARN APP_SETUP: ALLOWED_CORS_ORIGIN environment variable not set. CORS will not be configured.")

app.debug = os.getenv("FLASK_DEBUG", "False").lower() == "true"

# --- Configuration ---
database_url = os.getenv("DATABASE_URL")
db_connection_name = os.getenv("DB_CONNECTION_NAME")
db_user = os.getenv("DB_USER")
db_password = os.getenv("DB_PASSWORD")
db_name = os.getenv("DB_NAME")
db_driver = os.getenv("DB_DRIVER", "pg8000")
db_auto_create_tables = parse_bool(os.getenv("DB_AUTO_CREATE_TABLES"), default=False)


def _float_env(name, default):
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        print(f"WARN APP_SETUP: {name} is not a number, using {default}")
        return float(default)


SHEETS_SYNC_DELAY_SECONDS = _float_env("SHEETS_SYNC_DELAY_SECONDS", "0.1")
WEBHOOK_DEADLINE_SECONDS = _float_env("WEBHOOK_DEADLINE_SECONDS", "4.0")

DEFAULT_STORES = {
    1: ('uxyxaq-pu.myshopify.com', 'Motorhome Mattresses'),
    2: ('mattressmade.myshopify.com', 'My Bespoke Mattresses'),
    3: ('d587eb.myshopify.com', 'Caravan Mattresses'),
}


def load_store_configs():
    """Registry of Shopify stores keyed by shop domain, in STORE1..STORE3 order."""
    configs = {}
    for n, (default_domain, default_name) in DEFAULT_STORES.items():
        domain = os.getenv(f"STORE{n}_DOMAIN", default_domain)
        secret = os.getenv(f"STORE{n}_WEBHOOK_SECRET")
        if not secret:
            print(f"WARN APP_SETUP: STORE{n}_WEBHOOK_SECRET not set; webhooks from {domain} will be rejected.")
        configs[domain] = {
            'name': os.getenv(f"STORE{n}_NAME", default_name),
            'webhook_secret': secret,
            'order_prefix': os.getenv(f"STORE{n}_ORDER_PREFIX"),
        }
    return configs


STORE_CONFIGS = load_store_configs()
print(f"DEBUG APP_SETUP: {len(STORE_CONFIGS)} stores configured: {', '.join(STORE_CONFIGS)}")

engine = None
gcp_connector_instance = None
try:
    print("DEBUG APP_SETUP: Attempting DB engine init...")
    if database_url:
        print("DEBUG APP_SETUP: Initializing DB engine from DATABASE_URL")
        engine = sqlalchemy.create_engine(database_url, echo=(app.debug), pool_pre_ping=True)
        print("DEBUG APP_SETUP: Database engine initialized successfully.")
    elif not all([db_connection_name, db_user, db_password, db_name]):
        print("ERROR APP_SETUP: Missing one or more database connection environment variables.")
    else:
        from google.cloud.sql.connector import Connector as GcpSqlConnector
        print(f"DEBUG APP_SETUP: Initializing DB connection for {db_connection_name} using {db_driver}")
        gcp_connector_instance = GcpSqlConnector()
        def getconn():
            conn_gcp = gcp_connector_instance.connect(
                db_connection_name,
                db_driver,
                user=db_user,
                password=db_password,
                db=db_name
            )
            return conn_gcp
        engine = sqlalchemy.create_engine(
            f"postgresql+{db_driver}://",
            creator=getconn,
            pool_size=5, max_overflow=2, pool_timeout=30, pool_recycle=1800,
            echo=(app.debug)
        )
        print("DEBUG APP_SETUP: Database engine initialized successfully.")
except ImportError:
    print("ERROR APP_SETUP: google-cloud-sql-connector library not found. Please install it (`pip install cloud-sql-python-connector[pg8000]`).")
except Exception as e_engine:
    print(f"CRITICAL APP_SETUP: Database engine initialization failed: {e_engine}")
    traceback.print_exc()
    engine = None
print("DEBUG APP_SETUP: Finished DB engine init block.")

if engine is not None and db_auto_create_tables:
    try:
        import order_store
        order_store.create_tables(engine)
    except Exception as e_tables:
        print(f"ERROR APP_SETUP: Could not create tables: {e_tables}")
        traceback.print_exc()


def convert_row_to_dict(row):
    if not row: return None
    if isinstance(row, dict):
        row_dict = dict(row)
    else:
        row_dict = row._asdict() if hasattr(row, '_asdict') else dict(getattr(row, '_mapping', {}))
    row_dict = {str(k): v for k, v in row_dict.items()}
    for key, value in row_dict.items():
        if isinstance(value, datetime) and value.tzinfo is None:
            row_dict[key] = value.replace(tzinfo=timezone.utc)
    return row_dict


def make_json_safe(data):
    if isinstance(data, dict): return {key: make_json_safe(value) for key, value in data.items()}
    elif isinstance(data, list): return [make_json_safe(item) for item in data]
    elif isinstance(data, Decimal): return str(data)
    elif isinstance(data, datetime):
        if data.tzinfo is None: data = data.replace(tzinfo=timezone.utc)
        return data.isoformat()
    elif isinstance(data, date): return data.isoformat()
    else: return data


@app.route('/')
def hello(): return 'Order Ingestion Backend is Running!'
print("DEBUG APP_SETUP: Defined / route.")


@app.route('/api/health')
def health_check():
    if engine is None:
        return jsonify({"status": "unhealthy", "database": "not initialized",
                        "timestamp": datetime.now(timezone.utc).isoformat()}), 500
    conn = None
    try:
        conn = engine.connect()
        result = conn.execute(sqlalchemy.text("SELECT 1")).scalar_one_or_none()
        if result == 1:
            return jsonify({"status": "healthy", "database": "connected",
                            "timestamp": datetime.now(timezone.utc).isoformat()}), 200
        return jsonify({"status": "unhealthy", "database": "unexpected result"}), 500
    except Exception as e:
        print(f"ERROR /api/health: {e}"); traceback.print_exc()
        return jsonify({"status": "unhealthy", "database": "disconnected", "error": str(e),
                        "timestamp": datetime.now(timezone.utc).isoformat()}), 500
    finally:
        if conn is not None and not conn.closed: conn.close()
print("DEBUG APP_SETUP: Defined /api/health route.")


from blueprints.webhooks import webhooks_bp
from blueprints.orders import orders_bp
from blueprints.suppliers import suppliers_bp

app.register_blueprint(webhooks_bp, url_prefix='/webhook')
app.register_blueprint(orders_bp, url_prefix='/api')
app.register_blueprint(suppliers_bp, url_prefix='/api')

print("DEBUG APP_SETUP: All Blueprints registered.")


if __name__ == '__main__':
    print(f"Starting Order Ingestion Backend...")
    if engine is None:
        print("CRITICAL MAIN: Database engine not initialized. Flask app might not work correctly with DB operations.")

    run_host = os.getenv("FLASK_RUN_HOST", "127.0.0.1")
    run_port = int(os.getenv("FLASK_RUN_PORT", 8080))
    print(f"--> Running Flask development server on http://{run_host}:{run_port} with debug={app.debug}")
    app.run(host=run_host, port=run_port, debug=app.debug)
else:
    print("DEBUG APP_SETUP: Script imported by WSGI server (like Gunicorn).")
    if engine is None:
        print("CRITICAL GUNICORN: Database engine not initialized during import. DB operations will fail.")
