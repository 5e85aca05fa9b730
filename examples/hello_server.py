"""
HTTP Server Example

Runs a managed HTTP server, then shuts it down on Ctrl-C.

- Each TCP connection is tracked until it closes.
- Ctrl-C stops accepting and drains open connections for up to 5 seconds,
  then forces the rest closed.

Run:
  python examples/hello_server.py

Then try:
  curl -i http://127.0.0.1:8080/
  curl -i http://127.0.0.1:8080/slow
  curl -i -X POST http://127.0.0.1:8080/echo -d 'hello there'
"""

from __future__ import annotations

import logging
import signal

import anyio

from managed_http import HttpRequest, HttpResponse, ManagedHttpServer


class ExampleServer(ManagedHttpServer):
    async def handle_request(self, request: HttpRequest, response: HttpResponse) -> None:
        match (request.method, request.path):
            case ("GET", "/"):
                response.set_header("content-type", "text/plain; charset=utf-8")
                response.end("hello from managed-http\n")
            case ("GET", "/slow"):
                # Streams for a while; a graceful stop waits for it.
                for i in range(10):
                    response.write(f"tick {i}\n")
                    await anyio.sleep(0.5)
                response.end()
            case ("POST", "/echo"):
                response.set_header(
                    "content-type", request.headers.get("content-type", "application/octet-stream")
                )
                response.end(request.body)
            case _:
                response.status = 404
                response.end("not found\n")


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")

    async with anyio.create_task_group() as tg:
        server = ExampleServer(task_group=tg, host="127.0.0.1")
        await server.start(port=8080)

        print("Listening on http://127.0.0.1:8080")
        print("Press Ctrl-C to stop.")

        with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
            async for _ in signals:
                break

        with anyio.move_on_after(5):
            await server.stop()
        await server.stop(force=True)


if __name__ == "__main__":
    anyio.run(main)
