from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.dependencies import get_scheduler

router = APIRouter(tags=['health'])


@router.get('/healthz')
def healthz():
    return {'status': 'ok'}


@router.get('/api/health')
def health(scheduler=Depends(get_scheduler)):
    return {
        'status': 'ok',
        'timestamp': datetime.now(tz=timezone.utc),
        'scheduler': scheduler.get_health() if scheduler else {'is_running': False},
    }
