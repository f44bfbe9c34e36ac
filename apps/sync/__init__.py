# apps/sync/__init__.py

"""
Sync - Motor de sincronização do quadro em tempo real

Componentes:
- ordering: modelo de ordenação (funções puras)
- intents: validação das mensagens recebidas
- persistence: adaptadores de persistência (ORM e memória)
- broadcast: despacho para a sala do quadro
- handlers: mutações em duas etapas (broadcast otimista + persistência)
- consumers: WebSocket (autenticação, salas, roteamento de eventos)
"""
