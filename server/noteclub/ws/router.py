import asyncio
import websockets
import json
import time
import logging
from collections import defaultdict
import os
from typing import Optional, Dict, Any
from noteclub.db.connection import get_database
from noteclub.db.documents import is_hex24

logger = logging.getLogger(__name__)

# Constants
WS_HOST = os.getenv("WS_HOST", "0.0.0.0")
WS_PORT = int(os.getenv("WS_PORT", "8765"))
MAX_CONNECTIONS_PER_MINUTE = 10
MAX_TOTAL_CLIENTS = 100
MAX_MESSAGE_RATE = 60

# State
clients = {}  # Maps user IDs to WebSocket connections
client_message_rates = defaultdict(lambda: {'count': 0, 'reset_time': time.time() + 60})
connection_attempts = defaultdict(lambda: {'count': 0, 'reset_time': time.time() + 60})

# Event loop the server runs on; the HTTP API schedules pushes onto it
_loop: Optional[asyncio.AbstractEventLoop] = None

# --- Utility Functions ---


def is_valid_token(token):
    return bool(token) and token == os.getenv("API_TOKEN")


def sanitize_input(text):
    if not isinstance(text, str):
        return ""
    return text.replace('\x00', '').strip()[:1000]


async def send_json(websocket, data, timeout=5.0):
    try:
        await asyncio.wait_for(websocket.send(json.dumps(data, default=str)), timeout=timeout)
        return True
    except Exception as e:
        logger.debug(f"Failed to send message: {e}")
        return False


async def send_error(websocket, error_msg):
    await send_json(websocket, {"type": "error", "message": error_msg})

# --- Rate Limiting ---


def _check_window(bucket, key, limit):
    current_time = time.time()
    record = bucket[key]

    if current_time > record['reset_time']:
        record['count'] = 0
        record['reset_time'] = current_time + 60

    if record['count'] >= limit:
        return False

    record['count'] += 1
    return True


def check_connection_rate_limit(client_ip):
    return _check_window(connection_attempts, client_ip, MAX_CONNECTIONS_PER_MINUTE)


def check_message_rate_limit(client_id):
    return _check_window(client_message_rates, client_id, MAX_MESSAGE_RATE)

# --- Authentication ---


async def authenticate_client(websocket, client_ip):
    if len(clients) >= MAX_TOTAL_CLIENTS:
        await send_error(websocket, "Server at capacity. Please try again later.")
        return None

    if not check_connection_rate_limit(client_ip):
        await send_error(websocket, "Too many connection attempts. Please wait.")
        return None

    try:
        auth_message = await asyncio.wait_for(websocket.recv(), timeout=10.0)
        if len(auth_message) > 1000:
            await send_error(websocket, "Authentication message too large")
            return None

        auth_data = json.loads(auth_message)
        token = auth_data.get('token')
        user_id = sanitize_input(auth_data.get('user_id', ''))

        if not token or not user_id:
            await send_error(websocket, "Invalid authentication format")
            return None

        if not is_valid_token(token):
            await send_error(websocket, "Invalid authentication token")
            return None

        if not is_hex24(user_id):
            await send_error(websocket, "User ID must be a 24-character hex string")
            return None

        user = get_database().users.find_one({"id": user_id}, {"_id": 0, "id": 1})
        if not user:
            await send_error(websocket, "Unknown user")
            return None

        return user_id
    except (asyncio.TimeoutError, json.JSONDecodeError):
        await send_error(websocket, "Authentication failed")
        return None
    except Exception as e:
        logger.debug(f"Authentication error: {e}")
        await send_error(websocket, "Authentication error")
        return None

# --- Command Handling ---


async def handle_command(websocket, user_id, message_obj):
    msg_type = message_obj.get("type")
    if msg_type == "list_online":
        await send_json(websocket, {
            "type": "online_users",
            "users": get_online_clients()
        })
    elif msg_type == "unread_count":
        try:
            count = get_database().notifications.count_documents({"user": user_id, "is_read": False})
            await send_json(websocket, {"type": "unread_count", "count": count})
        except Exception as e:
            logger.error(f"Failed to count notifications for {user_id}: {e}")
            await send_error(websocket, "Failed to load unread count")
    elif msg_type == "ping":
        await send_json(websocket, {"type": "pong", "timestamp": int(time.time())})
    else:
        await send_error(websocket, f"Unknown command: {sanitize_input(str(msg_type))}")


async def process_message(websocket, user_id, message):
    if not check_message_rate_limit(user_id):
        await send_error(websocket, "Message rate limit exceeded. Please slow down.")
        return

    if len(message) > 2000:
        await send_error(websocket, "Message too large")
        return

    try:
        parsed = json.loads(message)
    except json.JSONDecodeError:
        await send_error(websocket, "Messages must be JSON objects")
        return

    if not isinstance(parsed, dict):
        await send_error(websocket, "Messages must be JSON objects")
        return

    await handle_command(websocket, user_id, parsed)

# --- Connection Lifecycle ---


async def register_client(user_id, websocket):
    previous = clients.get(user_id)
    if previous is not None and previous is not websocket:
        # Newest connection wins (page reloads, second tab)
        await send_error(previous, "Connected from another session")
        await previous.close()
    clients[user_id] = websocket
    logger.info(f"{user_id} connected (total: {len(clients)})")
    await send_json(websocket, {
        "type": "connected",
        "message": f"Successfully connected as {user_id}",
        "active_clients": len(clients)
    })


def unregister_client(user_id, websocket=None):
    if user_id in clients and (websocket is None or clients[user_id] is websocket):
        del clients[user_id]
        logger.info(f"{user_id} disconnected (remaining: {len(clients)})")


async def handler(websocket):
    user_id = None
    client_ip = websocket.remote_address[0] if websocket.remote_address else "unknown"
    logger.info(f"New connection from {client_ip}")

    try:
        user_id = await authenticate_client(websocket, client_ip)
        if not user_id:
            return

        await register_client(user_id, websocket)

        async for message in websocket:
            await process_message(websocket, user_id, message)

    except websockets.exceptions.ConnectionClosed:
        pass
    except Exception as e:
        logger.error(f"Handler error for {user_id or client_ip}: {e}")
    finally:
        if user_id:
            unregister_client(user_id, websocket)

# --- API Integration Functions ---


def get_online_clients():
    """Get list of online user IDs"""
    return list(clients.keys())


def is_user_online(user_id):
    """Check if a user is currently online"""
    return user_id in clients


async def _push(user_id: str, payload: Dict[str, Any]) -> bool:
    websocket = clients.get(user_id)
    if not websocket:
        return False
    return await send_json(websocket, payload)


def send_notification(user_id: str, notification: Dict[str, Any]) -> bool:
    """Push a stored notification to ``user_id`` if they are connected.

    Safe to call from the HTTP API's thread: the send is scheduled on the
    WebSocket server's loop. Returns True when the push was scheduled.
    """
    if _loop is None or not _loop.is_running() or user_id not in clients:
        return False
    payload = {"type": "notification", **notification}
    asyncio.run_coroutine_threadsafe(_push(user_id, payload), _loop)
    logger.info(f"Pushed {notification.get('type')} notification to {user_id}")
    return True

# --- Entry Point ---


async def start_websocket_server():
    global _loop
    _loop = asyncio.get_running_loop()
    logger.info(f"Starting WebSocket server at ws://{WS_HOST}:{WS_PORT}")
    async with websockets.serve(
        handler,
        WS_HOST,
        WS_PORT,
        close_timeout=10,
        max_size=2**20,
        max_queue=32,
        compression=None,
        ping_interval=20,
        ping_timeout=10
    ):
        await asyncio.Future()
