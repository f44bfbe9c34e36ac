# apps/sync/broadcast.py

"""
Despacho de broadcasts para a sala do quadro

A sala é um grupo do channel layer ('board_<id>'). Cada consumer
recebe 'room.event' e descarta o que tiver sido originado por ele.
"""

import logging

logger = logging.getLogger(__name__)


def room_group_name(board_id) -> str:
    return f'board_{board_id}'


class BroadcastDispatcher:
    """Entrega deltas a todas as conexões de uma sala"""

    def __init__(self, channel_layer):
        self.channel_layer = channel_layer

    async def join(self, board_id, channel_name):
        await self.channel_layer.group_add(room_group_name(board_id), channel_name)

    async def leave(self, board_id, channel_name):
        await self.channel_layer.group_discard(room_group_name(board_id), channel_name)

    async def broadcast(self, board_id, event, payload, exclude=None):
        """
        Envia o evento à sala

        exclude: channel_name que não deve receber (o originador).
        """
        await self.channel_layer.group_send(
            room_group_name(board_id),
            {
                'type': 'room.event',
                'event': event,
                'data': payload,
                'exclude': exclude,
            }
        )
        logger.debug(f"📡 {event} enviado para a sala {board_id}")
