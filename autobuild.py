# autobuild.py - 解析站点配置与内容，生成构建计划

import argparse
import json
import logging
import os
import sys
from collections import Counter
from dataclasses import replace
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader

import config
from errors import ConfigurationError, ContentError, PlanConsistencyError, SitePlanError
from planner import MAX_WORKERS, BuildPlan, build_plan

LOG_LEVEL_ENV = 'SITEPLAN_LOG_LEVEL'

# --- Jinja2 环境配置 (只用于纯文本报告) ---
TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')
env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)

logger = logging.getLogger('autobuild')


def setup_logging(verbose: int = 0) -> None:
    """-v 输出 INFO，-vv 输出 DEBUG；环境变量 SITEPLAN_LOG_LEVEL 优先。"""
    level = None
    level_name = os.getenv(LOG_LEVEL_ENV)
    if level_name:
        level = getattr(logging, level_name.strip().upper(), None)
    if not isinstance(level, int):
        level = {0: logging.WARNING, 1: logging.INFO}.get(verbose, logging.DEBUG)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        force=True,
    )


# --- Manifest 辅助函数 (变更检测) ---

def load_manifest(path: str) -> Dict[str, Any]:
    """加载上一次的构建清单文件。"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        return {}


def save_manifest(path: str, manifest: Dict[str, Any]) -> None:
    """保存当前的构建清单文件。"""
    try:
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(manifest, f, ensure_ascii=False, indent=4, sort_keys=True)
    except OSError as e:
        logger.warning("Cannot write build manifest %s: %s", path, e)


def make_manifest(plan: BuildPlan) -> Dict[str, Any]:
    return {
        'fingerprint': plan.fingerprint(),
        'content': {item.path: item.digest for item in plan.content_index},
    }


def compare_manifest(old: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Any]:
    old_content = old.get('content', {})
    new_content = new['content']
    return {
        'first_build': not old,
        'plan_changed': old.get('fingerprint') != new['fingerprint'],
        'added': sorted(set(new_content) - set(old_content)),
        'removed': sorted(set(old_content) - set(new_content)),
        'changed': sorted(p for p in new_content if p in old_content and old_content[p] != new_content[p]),
    }


# --- 报告 ---

def render_report(plan: BuildPlan, changes: Optional[Dict[str, Any]] = None) -> str:
    template = env.get_template('plan_report.txt')
    return template.render(
        plan=plan,
        site=plan.site,
        fingerprint=plan.fingerprint(),
        item_counts=Counter(item.language for item in plan.content_index),
        page_counts=Counter(page.kind.value for page in plan.pages),
        changes=changes,
    )


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Resolve the site configuration and content into a build plan.',
    )
    parser.add_argument('-c', '--config', default=config.CONFIG_FILE, help='site configuration file (YAML)')
    parser.add_argument('--content-dir', help='override the content directory')
    parser.add_argument('-D', '--buildDrafts', dest='build_drafts', action='store_true', help='include content marked as draft')
    parser.add_argument('-F', '--buildFuture', dest='build_future', action='store_true', help='include content with a future publish date')
    parser.add_argument('-E', '--buildExpired', dest='build_expired', action='store_true', help='include expired content')
    parser.add_argument('-o', '--output', help=f'write the plan as JSON (e.g. {config.PLAN_FILE})')
    parser.add_argument('--report', action='store_true', help='print a human readable plan summary')
    parser.add_argument('--manifest', help=f'build manifest path (default: {config.MANIFEST_FILE} next to the config)')
    parser.add_argument('--no-manifest', action='store_true', help='do not read or write the build manifest')
    parser.add_argument('--workers', type=positive_int, default=MAX_WORKERS, help='worker threads for the resolver stages')
    parser.add_argument('-v', '--verbose', action='count', default=0)
    return parser.parse_args(argv)


def build_site(args: argparse.Namespace) -> int:
    print("\n" + "=" * 40)
    print("   🚀 RESOLVING BUILD PLAN")
    print("=" * 40 + "\n")

    try:
        print(f"[1/4] Loading site configuration from {args.config}...")
        site = config.load_site_config(args.config)
        if args.content_dir:
            site = replace(site, content_dir=args.content_dir)
        site = site.with_policy(
            include_drafts=True if args.build_drafts else None,
            include_future=True if args.build_future else None,
            include_expired=True if args.build_expired else None,
        )

        print(f"\n[2/4] Resolving content in {site.content_dir}...")
        plan = build_plan(site, max_workers=args.workers)
    except PlanConsistencyError as e:
        print(f"\n❌ INTERNAL ERROR (plan consistency): {e}", file=sys.stderr)
        return 2
    except ContentError as e:
        print(f"\n❌ CONTENT ERROR: {e}", file=sys.stderr)
        return 1
    except ConfigurationError as e:
        print(f"\n❌ CONFIGURATION ERROR: {e}", file=sys.stderr)
        return 1
    except SitePlanError as e:
        print(f"\n❌ BUILD FAILED: {e}", file=sys.stderr)
        return 1

    print(f"   -> {len(plan.content_index)} content item(s), {len(plan.pages)} page(s), "
          f"{len(plan.languages)} language(s)")

    # -------------------------------------------------------------------------
    # [3/4] 与上一次构建清单对比
    # -------------------------------------------------------------------------
    changes = None
    new_manifest = make_manifest(plan)
    manifest_path = args.manifest or os.path.join(
        os.path.dirname(os.path.abspath(args.config)), config.MANIFEST_FILE)
    if args.no_manifest:
        print("\n[3/4] Manifest disabled, skipping change detection.")
    else:
        print("\n[3/4] Comparing with previous build manifest...")
        changes = compare_manifest(load_manifest(manifest_path), new_manifest)
        if changes['first_build']:
            print("   -> No previous manifest, every item is new.")
        elif not changes['plan_changed']:
            print("   -> [UNCHANGED] Build plan is identical to the previous run.")
        else:
            for path in changes['added']:
                print(f"   -> [ADDED] {path}")
            for path in changes['changed']:
                print(f"   -> [CONTENT CHANGED] {path}")
            for path in changes['removed']:
                print(f"   -> [REMOVED] {path}")
            if not (changes['added'] or changes['changed'] or changes['removed']):
                print("   -> [CHANGE DETECTED] Configuration or derived data changed.")

    # -------------------------------------------------------------------------
    # [4/4] 输出
    # -------------------------------------------------------------------------
    print("\n[4/4] Writing results...")
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(plan.to_json())
        print(f"   -> Wrote plan to {args.output}")
    if args.report:
        print()
        print(render_report(plan, changes))
    if not args.no_manifest:
        save_manifest(manifest_path, new_manifest)
        print("   -> Manifest file updated.")

    print(f"\n✅ PLAN COMPLETE ({plan.fingerprint()[:12]})")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    return build_site(args)


if __name__ == '__main__':
    sys.exit(main())
