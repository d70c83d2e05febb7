"""
Primitivas de concurrencia del pipeline.

- CancellationToken: flag cooperativo que se revisa después de cada await
- BoundedWorkerPool: cola con N workers (N=1 -> estrictamente secuencial)
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog

from homeswipe.exceptions import OperationCancelled

logger = structlog.get_logger()


class CancellationToken:
    """
    Token de cancelación de una corrida.

    Cada corrida nueva crea su token y cancela el anterior; el código
    async revisa el token después de cada punto de suspensión y, si
    está cancelado, no toca ningún estado compartido.
    """

    _next_generation = 0

    def __init__(self):
        CancellationToken._next_generation += 1
        self.generation = CancellationToken._next_generation
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self._cancelled:
            self._cancelled = True
            logger.debug("Corrida cancelada", generation=self.generation)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(f"Corrida {self.generation} cancelada")


class BoundedWorkerPool:
    """
    Pool de workers sobre una asyncio.Queue.

    Con size=1 los items se procesan en orden de índice, uno por vez
    (respeta los rate limits de los proveedores). Un error en un item
    se loguea y no frena al resto.
    """

    def __init__(self, size: int = 1):
        if size < 1:
            raise ValueError("El pool necesita al menos un worker")
        self.size = size

    async def run(
        self,
        items: Sequence[Any],
        handler: Callable[[int, Any], Awaitable[Any]],
        token: Optional[CancellationToken] = None,
    ) -> list[Any]:
        """
        Procesa todos los items con handler(index, item).

        Args:
            items: Items a procesar
            handler: Corrutina por item
            token: Si se cancela, los items pendientes no se procesan

        Returns:
            Resultados por índice (None para los no procesados o fallidos)
        """
        results: list[Any] = [None] * len(items)
        if not items:
            return results

        queue: asyncio.Queue = asyncio.Queue()
        for index, item in enumerate(items):
            queue.put_nowait((index, item))

        async def worker(worker_id: int):
            while True:
                try:
                    index, item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    if token is not None and token.cancelled:
                        continue
                    results[index] = await handler(index, item)
                except OperationCancelled:
                    continue
                except Exception as e:
                    logger.error(
                        "Error procesando item del pool",
                        worker=worker_id,
                        index=index,
                        error=str(e),
                    )
                finally:
                    queue.task_done()

        workers = min(self.size, len(items))
        await asyncio.gather(*(worker(i) for i in range(workers)))
        return results
