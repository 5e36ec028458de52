# agentfleet/account_stream.py
import asyncio
import json
import logging
from typing import Callable, Optional

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from agentfleet.errors import ApplicationFault, ExchangeError, TransportFault
from agentfleet.exchange_client import ExchangeClient
from agentfleet.retry import RetryPolicy

KEEPALIVE_INTERVAL_SECONDS = 30 * 60


class ListenKeyExpired(Exception):
    pass


class AccountStream:
    """
    Out-of-band account updates for one agent over the user data websocket.
    - Obtains a listen key and keeps it alive every 30 minutes.
    - Reconnects on dropped connections; renews the key when it expires.
    - Closes the key on shutdown.
    The trading loop does not depend on this stream; it only feeds logs/callbacks.
    """
    def __init__(
        self,
        client: ExchangeClient,
        ws_url: str,
        on_event: Optional[Callable[[str, dict], None]] = None,
        keepalive_interval: float = KEEPALIVE_INTERVAL_SECONDS,
        retry_policy: RetryPolicy = RetryPolicy(),
        sleep=asyncio.sleep,
    ):
        self.client = client
        self.ws_url = ws_url.rstrip("/")
        self.on_event = on_event
        self.keepalive_interval = keepalive_interval
        self.retry_policy = retry_policy
        self._sleep = sleep
        self.listen_key: Optional[str] = None

    @property
    def agent_id(self) -> str:
        return self.client.credentials.agent_id

    @property
    def url(self) -> str:
        return f"{self.ws_url}/ws/{self.listen_key}"

    async def _obtain_key(self):
        self.listen_key = await self.retry_policy.call(self.client.new_listen_key, description=f"[{self.agent_id}] listen key")
        logging.info(f"[{self.agent_id}] Obtained user data listen key.")

    async def keepalive_loop(self):
        while True:
            await self._sleep(self.keepalive_interval)
            if not self.listen_key:
                continue
            try:
                await self.client.keepalive_listen_key(self.listen_key)
                logging.debug(f"[{self.agent_id}] Listen key kept alive.")
            except (TransportFault, ApplicationFault) as e:
                logging.warning(f"[{self.agent_id}] Listen key keepalive failed: {e}")

    def handle_message(self, message: str):
        event = json.loads(message)
        event_type = event.get("e", "unknown")
        if event_type == "listenKeyExpired":
            raise ListenKeyExpired()
        if event_type == "ACCOUNT_UPDATE":
            positions = event.get("a", {}).get("P", [])
            logging.info(f"[{self.agent_id}] Account update ({event.get('a', {}).get('m', '')}), {len(positions)} position change(s).")
        elif event_type == "ORDER_TRADE_UPDATE":
            order = event.get("o", {})
            logging.info(f"[{self.agent_id}] Order {order.get('i')} {order.get('s')} {order.get('S')} {order.get('X')} filled {order.get('z')}")
        elif event_type == "MARGIN_CALL":
            logging.warning(f"[{self.agent_id}] Margin call received: {event}")
        if self.on_event is not None:
            self.on_event(self.agent_id, event)

    async def run(self):
        await self._obtain_key()
        keepalive = asyncio.create_task(self.keepalive_loop())
        try:
            while True:
                async for websocket in connect(self.url, ping_interval=20):
                    logging.info(f"[{self.agent_id}] Connected to user data stream.")
                    try:
                        async for message in websocket:
                            try:
                                self.handle_message(message)
                            except ValueError:
                                logging.error(f"[{self.agent_id}] Unreadable user data message", exc_info=True)
                    except ConnectionClosed as e:
                        logging.error(f"[{self.agent_id}] User data stream closed: {e}. Reconnecting...")
                        await self._sleep(5)
                        continue
                    except ListenKeyExpired:
                        logging.warning(f"[{self.agent_id}] Listen key expired. Renewing.")
                        await websocket.close()
                        await self._obtain_key()
                        break
        finally:
            keepalive.cancel()
            await asyncio.gather(keepalive, return_exceptions=True)
            await self.close()

    async def close(self):
        if not self.listen_key:
            return
        try:
            await self.client.close_listen_key(self.listen_key)
            logging.info(f"[{self.agent_id}] Listen key closed.")
        except ExchangeError as e:
            logging.warning(f"[{self.agent_id}] Could not close listen key: {e}")
        self.listen_key = None
