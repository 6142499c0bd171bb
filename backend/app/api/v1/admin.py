from fastapi import APIRouter, Depends
from app.core.deps import get_sweeper
from app.services.storage_manager import RetentionSweeper

router = APIRouter()


@router.get("/storage")
def get_storage_stats(sweeper: RetentionSweeper = Depends(get_sweeper)):
    """get current storage usage statistics"""
    return sweeper.get_disk_usage()


@router.post("/storage/cleanup")
def trigger_cleanup(sweeper: RetentionSweeper = Depends(get_sweeper)):
    """run one retention sweep now instead of waiting for the timer"""
    report = sweeper.sweep()
    return {
        "success": True,
        "result": report.as_dict()
    }
