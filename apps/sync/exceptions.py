# apps/sync/exceptions.py

"""
Erros do motor de sincronização

Índices fora do intervalo e ids desconhecidos não são erros: são
limitados ou ignorados (cliente com estado desatualizado).
"""


class SyncError(Exception):
    """Base dos erros enviados ao cliente como frame 'error'"""

    code = 'sync-error'

    def __init__(self, message='', errors=None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}

    def as_payload(self):
        return {'code': self.code, 'message': self.message, 'errors': self.errors}


class NotAMember(SyncError):
    code = 'not-a-member'


class InvalidRequest(SyncError):
    code = 'invalid-request'


class PersistenceFailure(Exception):
    """Escrita rejeitada depois do broadcast otimista já ter saído"""
