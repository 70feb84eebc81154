"""Track library, metadata, streaming and download.

  GET    /library newest tracks of the caller
  GET    /tracks/{track_id} one track's metadata
  DELETE /library/{track_id} remove the row and its stored audio
  GET    /stream/{track_id} inline audio (range requests supported)
  GET    /download/{track_id} audio as an attachment
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse

from texttune.api.deps import get_audio_store, get_track_store
from texttune.auth.session import current_user
from texttune.db.tables import Track, User
from texttune.db.tracks import TrackStore
from texttune.storage.audio_store import AudioStore, content_type_for_format

router = APIRouter()


def _prompt_title(track: Track) -> str:
    raw = (track.prompt_raw or track.prompt_expanded or "").strip()
    if raw:
        return raw
    return f"Track #{(track.id or '')[:8] or 'track'}"


def _track_summary(track: Track) -> dict:
    return {
        "id": track.id,
        "created_at": track.created_at.isoformat() if track.created_at else None,
        "duration": track.duration,
        "samplerate": track.samplerate,
        "format": track.format,
        "audio_url": f"/v1/stream/{track.id}",
        "download_url": f"/v1/download/{track.id}",
        "prompt_raw": track.prompt_raw,
        "prompt_expanded": track.prompt_expanded,
        "prompt_title": _prompt_title(track),
    }


def _require_track(tracks: TrackStore, track_id: str, user: User) -> Track:
    track = tracks.get_for_user(track_id, user.id)
    if track is None:
        raise HTTPException(status_code=404, detail="not_found")
    return track


@router.get("/library")
async def list_library(
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(current_user),
    tracks: TrackStore = Depends(get_track_store),
):
    items = [_track_summary(t) for t in tracks.list_by_user(user.id, limit)]
    return {"items": items, "next_cursor": None}


@router.get("/tracks/{track_id}")
async def get_track(
    track_id: str,
    user: User = Depends(current_user),
    tracks: TrackStore = Depends(get_track_store),
):
    track = _require_track(tracks, track_id, user)
    return {**_track_summary(track), "params": track.params or {}}


@router.delete("/library/{track_id}")
async def delete_track(
    track_id: str,
    user: User = Depends(current_user),
    tracks: TrackStore = Depends(get_track_store),
    audio: AudioStore = Depends(get_audio_store),
):
    track = tracks.delete_for_user(track_id, user.id)
    if track is None:
        raise HTTPException(status_code=404, detail="not_found")
    audio.remove(track.storage_key_original)
    audio.remove(track.storage_key_mp3)
    return {"ok": True}


@router.get("/stream/{track_id}")
async def stream_track(
    track_id: str,
    user: User = Depends(current_user),
    tracks: TrackStore = Depends(get_track_store),
    audio: AudioStore = Depends(get_audio_store),
):
    track = _require_track(tracks, track_id, user)
    if not audio.file_exists(track.storage_key_original):
        raise HTTPException(status_code=404, detail="not_found")
    return FileResponse(
        track.storage_key_original,
        media_type=content_type_for_format(track.format),
        content_disposition_type="inline",
        filename=f"texttune-{track.id}.{(track.format or 'wav').lower()}",
    )


@router.get("/download/{track_id}")
async def download_track(
    track_id: str,
    user: User = Depends(current_user),
    tracks: TrackStore = Depends(get_track_store),
    audio: AudioStore = Depends(get_audio_store),
):
    track = _require_track(tracks, track_id, user)
    if not audio.file_exists(track.storage_key_original):
        raise HTTPException(status_code=404, detail="not_found")
    ext = (track.format or "wav").lower()
    return FileResponse(
        track.storage_key_original,
        media_type=content_type_for_format(ext),
        filename=f"texttune-{track.id}.{ext}",
    )
