"""CLI entry point for the menu reader."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .api import ResilientClient
from .config import SUPPORTED_LANGUAGES, MenuReaderConfig, load_config
from .exceptions import ConfigurationError, MenuReaderError
from .models import UserProfile
from .offline import ConnectivityMonitor, HttpUploader, OfflineManager
from .pipeline import EventKind, MenuAnalysisPipeline, PipelineEvent
from .ratelimit import IntervalGate
from .search import ImageSearchService
from .storage import ImageCache, KeyValueStore, MenuStorage, ProfileStore
from .vision import create_backend


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="menureader",
        description="メニューリーダー: メニューの写真から料理を読み取り、翻訳と画像を表示します",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="設定ファイルのパス (TOML)",
    )
    parser.add_argument(
        "--env-file", type=str, default=".env", help=".env ファイルのパス"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="デバッグログを表示"
    )

    sub = parser.add_subparsers(dest="command")

    # scan
    scan_parser = sub.add_parser("scan", help="メニュー画像を解析")
    scan_parser.add_argument("image", type=str, help="メニュー画像のパス")
    scan_parser.add_argument(
        "--lang", type=str, default=None, choices=SUPPORTED_LANGUAGES,
        help="翻訳先の言語",
    )
    scan_parser.add_argument(
        "--text-only", action="store_true", help="画像検索を行わない"
    )
    scan_parser.add_argument(
        "--offline", action="store_true", help="オフラインとして保存 (送信キューに追加)"
    )
    scan_parser.add_argument("--json", action="store_true", help="JSON形式で出力")

    # history
    history_parser = sub.add_parser("history", help="解析履歴を表示")
    history_parser.add_argument("--page", type=int, default=0, help="ページ番号 (0始まり)")
    history_parser.add_argument("--size", type=int, default=10, help="1ページの件数")
    history_parser.add_argument("--json", action="store_true", help="JSON形式で出力")

    # favorite / delete
    fav_parser = sub.add_parser("favorite", help="お気に入りを切り替え")
    fav_parser.add_argument("id", type=str, help="履歴ID")
    del_parser = sub.add_parser("delete", help="履歴を削除")
    del_parser.add_argument("id", type=str, help="履歴ID")

    # pending
    pending_parser = sub.add_parser("pending", help="未送信キューを表示")
    group = pending_parser.add_mutually_exclusive_group()
    group.add_argument("--flush", action="store_true", help="未送信データをアップロード")
    group.add_argument("--clear", action="store_true", help="未送信キューを空にする")

    # storage
    storage_parser = sub.add_parser("storage", help="ストレージ使用量を表示")
    storage_parser.add_argument(
        "--quota", type=int, default=None, metavar="BYTES", help="容量上限を設定"
    )
    storage_parser.add_argument(
        "--evict", type=int, default=None, metavar="DAYS",
        help="指定日数より古い履歴を削除 (お気に入りを除く)",
    )
    storage_parser.add_argument(
        "--clear-image-cache", action="store_true", help="画像検索キャッシュを削除"
    )

    # profile
    profile_parser = sub.add_parser("profile", help="ユーザー設定を表示・変更")
    profile_parser.add_argument(
        "--lang", type=str, default=None, choices=SUPPORTED_LANGUAGES,
        help="翻訳先の言語を設定",
    )
    profile_parser.add_argument(
        "--allergen", type=str, action="append", default=None,
        help="アレルゲンを設定 (複数指定可)",
    )

    # check
    sub.add_parser("check", help="設定とAPI接続を確認")

    # schedule
    sub.add_parser("schedule", help="メンテナンスジョブを常駐実行")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    config = load_config(args.config, env_file=args.env_file)
    logging.basicConfig(
        level=logging.DEBUG if (args.verbose or config.debug_logging) else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        match args.command:
            case "scan":
                asyncio.run(_cmd_scan(config, args))
            case "history":
                _cmd_history(config, args)
            case "favorite":
                _cmd_favorite(config, args)
            case "delete":
                _cmd_delete(config, args)
            case "pending":
                asyncio.run(_cmd_pending(config, args))
            case "storage":
                _cmd_storage(config, args)
            case "profile":
                _cmd_profile(config, args)
            case "check":
                asyncio.run(_cmd_check(config))
            case "schedule":
                asyncio.run(_cmd_schedule(config))
    except MenuReaderError as e:
        print(f"エラー: {e.user_message}", file=sys.stderr)
        for suggestion in e.suggestions:
            print(f"  - {suggestion}", file=sys.stderr)
        sys.exit(1)


def _open_storage(config: MenuReaderConfig) -> tuple[KeyValueStore, MenuStorage]:
    store = KeyValueStore(config.storage.db_path)
    return store, MenuStorage(
        store,
        max_items=config.storage.max_items,
        default_quota=config.storage.quota_bytes,
    )


def _open_image_cache(config: MenuReaderConfig) -> ImageCache:
    return ImageCache(
        config.storage.db_path, max_age_days=config.storage.image_cache_days
    )


def _make_client(config: MenuReaderConfig) -> ResilientClient:
    return ResilientClient(
        timeout=config.network.timeout,
        max_retries=config.network.max_retries,
        base_delay=config.network.base_delay,
    )


def _print_progress(event: PipelineEvent) -> None:
    if event.kind is EventKind.STAGE:
        print(f"[{event.progress:>4.0%}] {event.stage.description}")
    elif event.item_state is not None and event.item_state.is_terminal:
        mark = "✓" if event.item_state.error is None else "✗"
        print(f"   {mark} #{event.item_index + 1}")


async def _cmd_scan(config: MenuReaderConfig, args) -> None:
    if args.text_only:
        if not config.gemini.api_key:
            raise ConfigurationError(missing=["GEMINI_API_KEY"])
    else:
        config.validate()

    image = Path(args.image).read_bytes()
    store, storage = _open_storage(config)
    profile = ProfileStore(store).load_profile()
    language = args.lang or config.analysis.target_language or profile.target_language
    cache = _open_image_cache(config)

    try:
        async with _make_client(config) as client:
            uploader = (
                HttpUploader(client, config.sync.upload_url)
                if config.sync.upload_url
                else None
            )
            manager = OfflineManager(
                storage, ConnectivityMonitor(connected=not args.offline), uploader
            )
            pipeline = MenuAnalysisPipeline(
                create_backend(config, client),
                ImageSearchService(
                    client,
                    api_key=config.search.api_key,
                    engine_id=config.search.engine_id,
                    base_url=config.search.base_url,
                    cache=cache,
                ),
                recorder=manager,
                gate=IntervalGate(config.analysis.request_interval),
                concurrency=config.analysis.concurrency,
                max_dimension=config.analysis.max_dimension,
                search_count=config.search.results_per_dish,
                configured=lambda: config.is_configured,
            )
            if not args.json:
                pipeline.subscribe(_print_progress)

            if args.text_only:
                outcome = await pipeline.analyze_text_only(image, language)
            else:
                outcome = await pipeline.analyze(image, language)
    finally:
        store.close()
        cache.close()

    if args.json:
        data = outcome.result.to_dict()
        data["id"] = str(outcome.record.id) if outcome.record else None
        data["images"] = {
            str(idx): [img.to_dict() for img in images]
            for idx, images in outcome.images.items()
        }
        print(json.dumps(data, ensure_ascii=False, indent=2))
        return

    result = outcome.result
    if not result.items:
        print("料理が見つかりませんでした。")
        return
    print(
        f"\n🍽  {len(result.items)} 品 "
        f"(言語: {result.detected_language}, 信頼度: {result.confidence:.0%}, "
        f"{result.processing_time_seconds:.1f}秒)"
    )
    for item in result.items:
        price = f"  {item.price}" if item.price else ""
        print(f"  {item.index + 1:>2}. {item.display_name}{price}")
        if item.translated_name and item.translated_name != item.original_name:
            print(f"      {item.original_name}")
        if item.description:
            print(f"      {item.description}")
        for img in outcome.images.get(item.index, [])[:1]:
            print(f"      🖼  {img.image_url}")
    if outcome.record is not None:
        print(f"\n履歴ID: {outcome.record.id}")


def _cmd_history(config: MenuReaderConfig, args) -> None:
    store, storage = _open_storage(config)
    try:
        page = storage.paginate(args.page, args.size)
    finally:
        store.close()

    if args.json:
        print(json.dumps(
            {
                "page": page.page,
                "size": page.size,
                "total": page.total,
                "items": [r.to_dict() for r in page.items],
            },
            ensure_ascii=False,
            indent=2,
        ))
        return

    if not page.items:
        print("履歴がありません。")
        return
    print(f"履歴 {page.total} 件 (ページ {page.page + 1})")
    for record in page.items:
        star = "★" if record.is_favorite else " "
        names = ", ".join(i.display_name for i in record.items[:3])
        more = " …" if len(record.items) > 3 else ""
        print(
            f" {star} {record.id}  {record.scan_date:%Y-%m-%d %H:%M}  "
            f"{len(record.items)} 品: {names}{more}"
        )
    if page.has_next:
        print(f"  次のページ: --page {page.page + 1}")


def _cmd_favorite(config: MenuReaderConfig, args) -> None:
    store, storage = _open_storage(config)
    try:
        is_favorite = storage.toggle_favorite(args.id)
    finally:
        store.close()
    print("お気に入りに追加しました。" if is_favorite else "お気に入りを解除しました。")


def _cmd_delete(config: MenuReaderConfig, args) -> None:
    store, storage = _open_storage(config)
    try:
        deleted = storage.delete(args.id)
    finally:
        store.close()
    if not deleted:
        print(f"履歴が見つかりません: {args.id}", file=sys.stderr)
        sys.exit(1)
    print("削除しました。")


async def _cmd_pending(config: MenuReaderConfig, args) -> None:
    store, storage = _open_storage(config)
    try:
        if args.clear:
            storage.clear_pending()
            print("未送信キューを空にしました。")
            return
        if args.flush:
            if not config.sync.upload_url:
                raise ConfigurationError(missing=["MENUREADER_UPLOAD_URL"])
            async with _make_client(config) as client:
                manager = OfflineManager(
                    storage,
                    ConnectivityMonitor(),
                    HttpUploader(client, config.sync.upload_url),
                )
                report = await manager.process_queue()
            print(
                f"アップロード: {report.uploaded} 件成功, {report.failed} 件失敗, "
                f"残り {report.remaining} 件"
            )
            return
        queue = storage.pending_queue()
    finally:
        store.close()

    if not queue:
        print("未送信のデータはありません。")
        return
    print(f"未送信: {len(queue)} 件")
    for record in queue:
        print(f"  {record.id}  {record.scan_date:%Y-%m-%d %H:%M}  {len(record.items)} 品")


def _cmd_storage(config: MenuReaderConfig, args) -> None:
    store, storage = _open_storage(config)
    cache = _open_image_cache(config)
    try:
        if args.quota is not None:
            removed = storage.set_quota(args.quota)
            print(f"容量上限を {args.quota:,} バイトに設定しました (削除: {removed} 件)")
        if args.evict is not None:
            removed = storage.evict_old(args.evict)
            print(f"{args.evict} 日より古い履歴を {removed} 件削除しました")
        if args.clear_image_cache:
            removed = cache.clear()
            print(f"画像キャッシュを {removed} 件削除しました")
        used = storage.storage_size_bytes()
        quota = storage.quota
        count = len(storage.load_history())
        pending = len(storage.pending_queue())
        cached = cache.count()
    finally:
        cache.close()
        store.close()
    print(f"使用量: {used:,} / {quota:,} バイト ({used / quota:.1%})")
    print(f"履歴: {count} 件, 未送信: {pending} 件, 画像キャッシュ: {cached} 件")


def _cmd_profile(config: MenuReaderConfig, args) -> None:
    store = KeyValueStore(config.storage.db_path)
    try:
        profiles = ProfileStore(store)
        profile = profiles.load_profile()
        if args.lang is not None or args.allergen is not None:
            profile = UserProfile(
                target_language=args.lang or profile.target_language,
                allergens=args.allergen if args.allergen is not None else profile.allergens,
            )
            profiles.save_profile(profile)
            print("設定を保存しました。")
    finally:
        store.close()
    print(f"翻訳先の言語: {profile.target_language}")
    print(f"アレルゲン: {', '.join(profile.allergens) or 'なし'}")


async def _cmd_check(config: MenuReaderConfig) -> None:
    missing = config.missing_keys()
    if missing:
        print(f"⚠  未設定: {', '.join(missing)}")
    else:
        print("✓ 必要な設定はすべて揃っています")

    async with _make_client(config) as client:
        pipeline = MenuAnalysisPipeline(
            create_backend(config, client),
            ImageSearchService(
                client,
                api_key=config.search.api_key,
                engine_id=config.search.engine_id,
                base_url=config.search.base_url,
            ),
            configured=lambda: config.is_configured,
        )
        health = await pipeline.check_health()

    print(f"{'✓' if health.vision_ok else '✗'} Vision API")
    print(f"{'✓' if health.search_ok else '✗'} 画像検索 API")
    for name, message in health.errors.items():
        print(f"   {name}: {message}")
    if not health.healthy:
        sys.exit(1)


async def _cmd_schedule(config: MenuReaderConfig) -> None:
    from .scheduler import MaintenanceScheduler

    store, storage = _open_storage(config)
    cache = _open_image_cache(config)
    async with _make_client(config) as client:
        manager = None
        if config.sync.upload_url:
            manager = OfflineManager(
                storage,
                ConnectivityMonitor(),
                HttpUploader(client, config.sync.upload_url),
            )
        scheduler = MaintenanceScheduler(config, storage, manager, cache)
        scheduler.start()
        for job in scheduler.get_jobs():
            print(f"  {job['name']} (次回: {job['next_run']})")
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.stop()
            store.close()
            cache.close()
