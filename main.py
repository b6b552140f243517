#!/usr/bin/env python3
"""
StoryFlow - Main Entry Point

Provider configuration, single generations and batch video runs from the
command line.

Usage:
    # Configure a provider and route its functions to it
    python main.py config add shenma --api-key sk-... --features textToImage,videoGeneration
    python main.py config sync shenma

    # Generate a single image or video
    python main.py image --prompt "a red cube on a marble table"
    python main.py video --prompt "drone shot over a misty forest" --aspect-ratio 9:16

    # Run a batch of scripts
    python main.py batch scripts.json
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from core.config import get_config
from core.errors import MultiMediaError, format_error_message

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("storyflow")


def _mask(api_key: str) -> str:
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:4]}...{api_key[-4:]}"


def build_config_manager():
    from services.multimedia import ConfigManager, JsonFileStore

    config = get_config()
    return ConfigManager(JsonFileStore(config.storage.config_path), cache_ttl=config.cache_ttl_seconds)


def build_service():
    from services.multimedia import AdapterRegistry, GenerationService

    config = get_config()
    return GenerationService(
        build_config_manager(),
        registry=AdapterRegistry(default_timeout=config.http_timeout_seconds),
        retry=config.retry,
    )


def print_event(event):
    print(event.to_cli_line())


# =============================================================================
# config
# =============================================================================

async def config_command(args) -> int:
    from services.multimedia import MediaFunction, ProviderConfig
    from services.multimedia.capabilities import PROVIDER_CAPABILITIES, known_provider, parse_function

    manager = build_config_manager()

    if args.action == "show":
        config = await manager.get_config()
        print("Providers:")
        for provider_id, provider_config in config.configs.items():
            features = ", ".join(fn.value for fn in provider_config.enabled_functions()) or "none"
            print(f"  {provider_id}: key={_mask(provider_config.api_key)} "
                  f"base_url={provider_config.base_url or 'default'} features=[{features}]")
        print("Assignments:")
        for function in MediaFunction:
            print(f"  {function.value}: {config.providers.get(function, '-')}")
        return 0

    if args.action == "validate":
        issues = get_config().validate()
        for issue in issues:
            print(f"settings: {issue}")
        result = await manager.validate_config(await manager.get_config())
        for error in result.errors:
            print(f"error: {error}")
        for warning in result.warnings:
            print(f"warning: {warning}")
        ok = result.valid and not issues
        print("Configuration is valid" if ok else "Configuration has errors")
        return 0 if ok else 1

    if args.action == "add":
        if args.features:
            functions = []
            for name in args.features.split(","):
                function = parse_function(name.strip())
                if function is None:
                    print(f"Unknown function: {name}")
                    return 1
                functions.append(function)
        else:
            provider = known_provider(args.provider)
            functions = sorted(PROVIDER_CAPABILITIES.get(provider, frozenset()), key=lambda fn: fn.value)

        provider_config = ProviderConfig(
            api_key=args.api_key,
            base_url=args.base_url,
            features={fn: True for fn in functions},
            timeout=args.timeout,
            retry_count=args.retry_count,
        )
        await manager.add_provider_config(args.provider, provider_config)
        print(f"Added {args.provider}")
        return 0

    if args.action == "assign":
        function = parse_function(args.function)
        if function is None:
            print(f"Unknown function: {args.function}")
            return 1
        await manager.set_provider_for_function(function, args.provider)
        print(f"{function.value} -> {args.provider}")
        return 0

    if args.action == "sync":
        await manager.sync_config(args.provider)
        print(f"Synced {args.provider}")
        return 0

    if args.action == "remove":
        await manager.remove_provider_config(args.provider)
        print(f"Removed {args.provider}")
        return 0

    return 1


# =============================================================================
# image / video
# =============================================================================

async def generate_image(prompt: str, aspect_ratio: Optional[str] = None) -> int:
    from services.multimedia import TextToImageRequest

    service = build_service()
    try:
        response = await service.generate_image(TextToImageRequest(prompt=prompt, aspect_ratio=aspect_ratio))
    finally:
        await service.close()

    for url in response.data.images if response.data else []:
        print(url)
    return 0 if response.success else 1


async def generate_video(
    prompt: str,
    images: list[str],
    aspect_ratio: str,
    duration: int,
    wait: bool = True,
    download: bool = True,
) -> int:
    """
    Submit a video and, unless ``wait`` is False, poll it to completion.

    Args:
        prompt: Scene description
        images: Optional reference frame URLs
        aspect_ratio: e.g. "16:9"
        duration: Seconds
        wait: Poll until the provider finishes
        download: Copy the result into the output directory
    """
    from services.multimedia import VideoGenerationRequest
    from services.streaming import ProgressTracker
    from services.video_generation import Task, TaskPoller, VideoDownloadManager

    config = get_config()
    service = build_service()
    tracker = ProgressTracker()
    tracker.on_event(print_event)

    try:
        response = await service.generate_video(VideoGenerationRequest(
            prompt=prompt,
            images=images,
            aspect_ratio=aspect_ratio,
            duration=duration,
        ))
        data = response.data
        if data and data.video_url and not data.task_id:
            print(data.video_url)
            return 0
        if not data or not data.task_id:
            print("Provider returned no task id")
            return 1

        provider = response.metadata.provider if response.metadata else None
        tracker.started(data.task_id, f"Submitted to {provider}", {"provider": provider})
        if not wait:
            print(data.task_id)
            return 0

        poller = TaskPoller(
            service,
            interval=config.polling.interval,
            progress_ceiling=config.polling.progress_ceiling,
            tracker=tracker,
        )
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, cancel.set)

        task = await poller.wait(Task(id=data.task_id, provider=provider), cancel=cancel)
        if task.cancelled:
            print(f"Stopped polling; task {task.id} keeps running at the provider")
            return 1
        if task.result_url is None:
            print(task.fail_reason)
            return 1

        print(task.result_url)
        if download:
            downloader = VideoDownloadManager(config.storage.output_dir)
            try:
                path = await downloader.download(task.result_url, scene_id=task.id)
            finally:
                await downloader.close()
            if path:
                print(path)
            else:
                tracker.warning(task.id, "Download failed; the video is still available at the provider URL")
        return 0
    finally:
        await service.close()


# =============================================================================
# batch
# =============================================================================

def load_jobs(path: str):
    from services.batch import BatchJob

    with open(path, "r", encoding="utf-8") as f:
        document = json.load(f)
    items = document.get("jobs", []) if isinstance(document, dict) else document
    return [BatchJob.from_dict(item) for item in items]


async def run_batch(path: str, args) -> int:
    from services.batch import BatchConfig, BatchScheduler, JobTracker, JsonSnapshotStore
    from services.streaming import ProgressTracker
    from services.video_generation import TaskPoller, VideoDownloadManager

    config = get_config()
    jobs = load_jobs(path)
    if not jobs:
        print(f"No jobs in {path}")
        return 1

    batch_config = BatchConfig.from_defaults(
        config.batch,
        max_retries=args.max_retries,
        processing_interval=args.interval,
        aspect_ratio=args.aspect_ratio,
        duration=args.duration,
        download_results=not args.no_download,
    )

    service = build_service()
    tracker = ProgressTracker()
    tracker.on_event(print_event)

    if args.database and config.database.url:
        snapshot_store = await JobTracker.connect(
            config.database.url,
            min_size=config.database.pool_min_size,
            max_size=config.database.pool_max_size,
        )
    else:
        snapshot_store = JsonSnapshotStore(config.storage.snapshot_dir)
    downloader = VideoDownloadManager(config.storage.output_dir)

    scheduler = BatchScheduler(
        service,
        TaskPoller(service, interval=config.polling.interval, progress_ceiling=config.polling.progress_ceiling),
        batch_config,
        snapshot_store=snapshot_store,
        downloader=downloader,
        tracker=tracker,
        batch_id=args.batch_id or Path(path).stem,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, scheduler.stop)

    try:
        summary = await scheduler.run(jobs)
    finally:
        await downloader.close()
        await service.close()
        if isinstance(snapshot_store, JobTracker):
            await snapshot_store.close()

    print(json.dumps(summary.to_dict(), indent=2))
    return 0 if summary.failed == 0 and summary.is_complete else 1


# =============================================================================
# clone
# =============================================================================

async def run_clone(target_id: str, watch_path: str, generate: bool) -> int:
    from services.clone import CloneWorkflowManager, FileImageSource, ImageAnalysisService, WorkflowStatus
    from services.streaming import ProgressTracker

    config = get_config()
    service = build_service()
    tracker = ProgressTracker()
    tracker.on_event(print_event)

    manager = CloneWorkflowManager(
        ImageAnalysisService(service),
        FileImageSource(watch_path),
        config.clone,
        tracker,
    )

    print(f"Waiting up to {config.clone.capture_timeout:g}s for an image at {watch_path}")
    try:
        await manager.initiate_clone(target_id)
        state = manager.get_state()
        if state.status == WorkflowStatus.COMPLETE and generate:
            await manager.handle_prompt_generation(state.generated_prompt)
            state = manager.get_state()
    finally:
        await service.close()

    if state.status == WorkflowStatus.ERROR:
        print(f"Failed at {state.error.step.value}: {state.error.message}")
        return 1
    print(state.generated_prompt)
    if state.cloned_image_url:
        print(state.cloned_image_url)
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="StoryFlow - storyboard image and video generation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Show providers and function assignments
    python main.py config show

    # Assign a function explicitly
    python main.py config assign imageAnalysis gemini

    # Submit a video without waiting for it
    python main.py video --prompt "city at night, neon rain" --no-wait

    # Batch with a single retry per job
    python main.py batch scripts.json --max-retries 1
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Config command
    config_parser = subparsers.add_parser("config", help="Manage provider configuration")
    config_sub = config_parser.add_subparsers(dest="action", help="Config action")
    config_sub.add_parser("show", help="Show providers and assignments")
    config_sub.add_parser("validate", help="Validate stored configuration")

    add_parser = config_sub.add_parser("add", help="Add or replace a provider")
    add_parser.add_argument("provider", help="Provider id (openai, zhipu, shenma, dayuyu, gemini, custom, ...)")
    add_parser.add_argument("--api-key", required=True, help="Provider API key")
    add_parser.add_argument("--base-url", help="Override the default base URL")
    add_parser.add_argument("--features", help="Comma-separated functions, defaults to everything the provider supports")
    add_parser.add_argument("--timeout", type=float, help="Request timeout in seconds")
    add_parser.add_argument("--retry-count", type=int, help="Retries after the first attempt")

    assign_parser = config_sub.add_parser("assign", help="Route a function to a provider")
    assign_parser.add_argument("function", help="Function name, e.g. textToImage")
    assign_parser.add_argument("provider", help="Provider id")

    sync_parser = config_sub.add_parser("sync", help="Route every supported function to a provider")
    sync_parser.add_argument("provider", help="Provider id")

    remove_parser = config_sub.add_parser("remove", help="Remove an unassigned provider")
    remove_parser.add_argument("provider", help="Provider id")

    # Image command
    image_parser = subparsers.add_parser("image", help="Generate an image")
    image_parser.add_argument("--prompt", "-p", required=True, help="Image prompt")
    image_parser.add_argument("--aspect-ratio", "-a", help="Aspect ratio, e.g. 16:9")

    # Video command
    video_parser = subparsers.add_parser("video", help="Generate a video")
    video_parser.add_argument("--prompt", "-p", required=True, help="Scene description")
    video_parser.add_argument("--image", "-i", action="append", default=[], help="Reference image URL")
    video_parser.add_argument("--aspect-ratio", "-a", default="16:9", help="Aspect ratio")
    video_parser.add_argument("--duration", "-d", type=int, default=10, help="Duration in seconds")
    video_parser.add_argument("--no-wait", action="store_true", help="Print the task id and exit")
    video_parser.add_argument("--no-download", action="store_true", help="Do not download the result")

    # Batch command
    batch_parser = subparsers.add_parser("batch", help="Run a batch of scripts")
    batch_parser.add_argument("file", help="JSON list of {title, content, images?}")
    batch_parser.add_argument("--max-retries", type=int, help="Retries per job")
    batch_parser.add_argument("--interval", type=float, help="Seconds between scheduler ticks")
    batch_parser.add_argument("--aspect-ratio", help="Aspect ratio for every job")
    batch_parser.add_argument("--duration", type=int, help="Duration for every job")
    batch_parser.add_argument("--batch-id", help="Snapshot id, defaults to the file name")
    batch_parser.add_argument("--database", action="store_true", help="Persist snapshots to DATABASE_URL")
    batch_parser.add_argument("--no-download", action="store_true", help="Keep remote URLs only")

    # Clone command
    clone_parser = subparsers.add_parser("clone", help="Derive a prompt from a captured image")
    clone_parser.add_argument("target_id", help="Storyboard item being cloned")
    clone_parser.add_argument("--watch", default="capture.png", help="Path the captured image will be written to")
    clone_parser.add_argument("--generate", action="store_true", help="Also generate the cloned image")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "config":
            if not args.action:
                config_parser.print_help()
                sys.exit(1)
            code = asyncio.run(config_command(args))

        elif args.command == "image":
            code = asyncio.run(generate_image(args.prompt, args.aspect_ratio))

        elif args.command == "video":
            code = asyncio.run(
                generate_video(
                    prompt=args.prompt,
                    images=args.image,
                    aspect_ratio=args.aspect_ratio,
                    duration=args.duration,
                    wait=not args.no_wait,
                    download=not args.no_download,
                )
            )

        elif args.command == "batch":
            code = asyncio.run(run_batch(args.file, args))

        elif args.command == "clone":
            code = asyncio.run(run_clone(args.target_id, args.watch, args.generate))

        else:
            code = 1

    except MultiMediaError as e:
        print(format_error_message(e))
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
