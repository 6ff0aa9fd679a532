"""Storage layer - in-memory session registry and action logs"""
import logging
from collections import OrderedDict
from typing import Dict, List, Optional

from devconsole.models import LogEntry
from devconsole.session import SessionController

logger = logging.getLogger(__name__)

# Closed sessions whose logs stay readable; the oldest are dropped first
MAX_CLOSED_SESSION_LOGS = 100


class Storage:
    """Live sessions and their action logs; nothing outlives the process"""
    
    def __init__(self, max_closed_logs: int = MAX_CLOSED_SESSION_LOGS):
        self.sessions: Dict[str, SessionController] = {}
        self.logs: "OrderedDict[str, List[LogEntry]]" = OrderedDict()  # closed session_id -> logs
        self.max_closed_logs = max_closed_logs
    
    async def save_session(self, session: SessionController):
        """Register session"""
        self.sessions[session.id] = session
        logger.info("Session %s started (auto_execute=%s)", session.id, session.auto_execute)
    
    async def get_session(self, session_id: str) -> Optional[SessionController]:
        """Get session"""
        return self.sessions.get(session_id)
    
    async def close_session(self, session_id: str) -> bool:
        """Close and forget a session, keeping its log"""
        session = self.sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        self.logs[session_id] = list(session.action_log)
        while len(self.logs) > self.max_closed_logs:
            evicted, _ = self.logs.popitem(last=False)
            logger.debug("Dropped logs of closed session %s", evicted)
        return True
    
    async def get_logs(self, session_id: str) -> List[LogEntry]:
        """Get logs for session"""
        session = self.sessions.get(session_id)
        if session is not None:
            return list(session.action_log)
        return self.logs.get(session_id, [])

# Global storage instance
storage = Storage()
