import os
import platform
import shutil
import tarfile
import time
import zipfile
from typing import Optional

import aiohttp
from loguru import logger

BASE_DIR = os.path.join("module", "ffmpeg")

DOWNLOAD_SOURCES = {
    "Windows": ("https://www.gyan.dev/ffmpeg/builds/ffmpeg-release-essentials.zip", "ffmpeg.zip"),
    "Linux": ("https://johnvansickle.com/ffmpeg/releases/ffmpeg-release-amd64-static.tar.xz", "ffmpeg.tar.xz"),
}


def format_size(size: float) -> str:
    """
    格式化顯示檔案大小。

    :param size: float, 檔案大小（以位元組為單位）。
    :return: str, 格式化後的檔案大小（如 KB、MB）。
    """
    for unit in ['B', 'KB', 'MB']:
        if size < 1024:
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} GB"


def bundled_path(system: str) -> str:
    """自動下載的 FFmpeg 存放位置，例如 module/ffmpeg/Linux/ffmpeg"""
    executable = "ffmpeg.exe" if system == "Windows" else "ffmpeg"
    return os.path.join(BASE_DIR, system, executable)


def find_ffmpeg(configured_path: Optional[str] = None) -> Optional[str]:
    """
    依序尋找 FFmpeg：設定檔指定的路徑 → 系統 PATH → 先前自動下載的版本

    :return: str or None, 找到的執行檔路徑
    """
    if configured_path:
        if os.path.isfile(configured_path) or shutil.which(configured_path):
            return configured_path
        logger.warning(f"設定的 FFMPEG_PATH 不存在: {configured_path}")

    system_ffmpeg = shutil.which("ffmpeg")
    if system_ffmpeg:
        return system_ffmpeg

    local = bundled_path(platform.system())
    if os.path.isfile(local):
        return os.path.relpath(local)
    return None


async def ensure_ffmpeg(configured_path: Optional[str] = None) -> str:
    """
    確保 FFmpeg 可用，找不到時自動下載（僅支援 Windows / Linux）

    :param configured_path: str or None, 設定檔中的 FFMPEG_PATH
    :return: str, FFmpeg 執行檔路徑
    :raises FileNotFoundError: 找不到且無法下載
    """
    found = find_ffmpeg(configured_path)
    if found:
        logger.info(f"使用 FFmpeg: {found}")
        return found

    system = platform.system()
    if system not in DOWNLOAD_SOURCES:
        raise FileNotFoundError(f"找不到 FFmpeg，且 {system} 不支援自動下載")

    url, archive_name = DOWNLOAD_SOURCES[system]
    target_dir = os.path.join(BASE_DIR, system)
    os.makedirs(target_dir, exist_ok=True)
    archive_path = os.path.join(target_dir, archive_name)

    logger.info("正在下載 FFmpeg...")
    await _download(url, archive_path)
    logger.info("正在解壓縮 FFmpeg...")
    _extract(archive_path, target_dir, system)

    ffmpeg_path = bundled_path(system)
    if not os.path.isfile(ffmpeg_path):
        raise FileNotFoundError(f"解壓縮後找不到 FFmpeg: {ffmpeg_path}")
    if system != "Windows":
        os.chmod(ffmpeg_path, 0o755)
    logger.info(f"FFmpeg 已設置完成: {ffmpeg_path}")
    return os.path.relpath(ffmpeg_path)


async def _download(url: str, file_name: str) -> None:
    """
    非同步下載壓縮檔並記錄下載進度。

    :raises FileNotFoundError: 下載失敗
    """
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(url) as response:
                if response.status != 200:
                    raise FileNotFoundError(f"下載 FFmpeg 失敗，HTTP 狀態碼: {response.status}")

                total_size = int(response.headers.get('Content-Length', 0))
                downloaded = 0
                start_time = time.time()
                last_report = 0.0

                with open(file_name, 'wb') as f:
                    async for chunk in response.content.iter_chunked(64 * 1024):
                        f.write(chunk)
                        downloaded += len(chunk)
                        if time.time() - last_report >= 5:
                            last_report = time.time()
                            percent = downloaded / total_size * 100 if total_size else 0
                            logger.info(f"下載中: {percent:.1f}%，已下載 {format_size(downloaded)}")

                logger.info(f"下載完成: {format_size(downloaded)}，耗時 {time.time() - start_time:.1f} 秒")
    except aiohttp.ClientError as e:
        raise FileNotFoundError(f"下載 FFmpeg 失敗: {e}") from e


def _extract(archive_path: str, target_dir: str, system: str) -> None:
    """
    解壓縮 FFmpeg 壓縮檔，把執行檔移到 target_dir 並清理暫存檔案
    """
    if archive_path.endswith(".zip"):
        with zipfile.ZipFile(archive_path, "r") as zip_ref:
            zip_ref.extractall(target_dir)
            top_level = zip_ref.namelist()[0]
    else:
        with tarfile.open(archive_path, "r:xz") as tar_ref:
            tar_ref.extractall(target_dir)
            top_level = tar_ref.getnames()[0]
    extracted_dir = os.path.join(target_dir, top_level.split("/")[0])

    if system == "Windows":
        source = os.path.join(extracted_dir, "bin", "ffmpeg.exe")
    else:
        source = os.path.join(extracted_dir, "ffmpeg")
    os.replace(source, bundled_path(system))

    os.remove(archive_path)
    if os.path.isdir(extracted_dir):
        shutil.rmtree(extracted_dir)
    logger.info("清理臨時檔案完成。")
