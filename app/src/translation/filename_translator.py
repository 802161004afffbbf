"""
Maps non-ASCII file and directory names to ASCII for translated output.

Each path segment is handled on its own: ASCII segments pass through,
known document terms are looked up in ``TERM_SLUGS`` (exactly, then as
substrings) and anything left over is reduced to hyphen-separated ASCII.
The output is always ASCII, so transliterating twice is the same as once.
"""

import re
from typing import Optional

from configs.config import get_config

cfg = get_config()

GENERIC_FILE_NAME = "document"
GENERIC_DIRECTORY_NAME = "folder"

# Common Chinese documentation terms → English slugs
TERM_SLUGS = {
    # Documents
    "自述文件": "README",
    "说明": "README",
    "介绍": "Introduction",
    "简介": "Introduction",
    "概述": "Overview",
    "概览": "Overview",
    "入门": "Getting-Started",
    "快速开始": "Quick-Start",
    "快速入门": "Quick-Start",
    "安装": "Installation",
    "安装指南": "Installation-Guide",
    "使用": "Usage",
    "使用指南": "Usage-Guide",
    "使用说明": "Usage-Guide",
    "教程": "Tutorial",
    "指南": "Guide",
    "配置": "Configuration",
    "配置说明": "Configuration-Guide",
    "常见问题": "FAQ",
    "问题": "FAQ",
    "更新日志": "CHANGELOG",
    "变更日志": "CHANGELOG",
    "变更记录": "CHANGELOG",
    "贡献": "Contributing",
    "贡献指南": "Contributing-Guide",
    "许可证": "LICENSE",
    "协议": "LICENSE",
    "作者": "Authors",
    "维护者": "Maintainers",
    "致谢": "Acknowledgments",
    "鸣谢": "Acknowledgments",
    "参考": "Reference",
    "参考文档": "Reference",
    "文档": "Documentation",
    "接口": "API",
    "接口文档": "API-Documentation",
    "开发": "Development",
    "开发指南": "Development-Guide",
    "部署": "Deployment",
    "部署指南": "Deployment-Guide",
    "架构": "Architecture",
    "设计": "Design",
    "设计文档": "Design-Document",
    "规范": "Specification",
    "标准": "Standard",
    "测试": "Testing",
    "测试指南": "Testing-Guide",
    "安全": "Security",
    "安全指南": "Security-Guide",
    "性能": "Performance",
    "优化": "Optimization",
    "示例": "Examples",
    "案例": "Examples",
    "样例": "Examples",
    "附录": "Appendix",
    "术语表": "Glossary",
    "词汇表": "Glossary",
    "索引": "Index",
    "目录": "Table-of-Contents",
    "路线图": "Roadmap",
    "计划": "Roadmap",
    "版本": "Version",
    "发布": "Release",
    "发布说明": "Release-Notes",
    "备注": "Notes",
    "笔记": "Notes",
    "总结": "Summary",
    "摘要": "Summary",
    "背景": "Background",
    "历史": "History",
    "对比": "Comparison",
    "比较": "Comparison",
    "功能": "Features",
    "特性": "Features",
    "需求": "Requirements",
    "依赖": "Dependencies",
    "兼容性": "Compatibility",
    "迁移": "Migration",
    "迁移指南": "Migration-Guide",
    "升级": "Upgrade",
    "升级指南": "Upgrade-Guide",
    # Programming
    "编程": "Programming",
    "编程导航": "Programming-Navigation",
    "编程学习": "Programming-Learning",
    "学习": "Learning",
    "学习路线": "Learning-Path",
    "知识": "Knowledge",
    "知识体系": "Knowledge-System",
    "知识库": "Knowledge-Base",
    "资源": "Resources",
    "资源汇总": "Resource-Collection",
    "工具": "Tools",
    "工具推荐": "Recommended-Tools",
    "框架": "Framework",
    "库": "Library",
    "项目": "Project",
    "项目介绍": "Project-Introduction",
    "项目说明": "Project-Description",
}

# Longest first, so "安装指南" wins over "安装"
_TERMS_BY_LENGTH = sorted(TERM_SLUGS, key=len, reverse=True)

_NON_ASCII_RUN = re.compile(r"[^\x00-\x7F]+")
_HYPHEN_RUN = re.compile(r"-{2,}")


def contains_non_ascii(text: str) -> bool:
    return _NON_ASCII_RUN.search(text) is not None


def _strip_to_ascii(text: str) -> str:
    text = _NON_ASCII_RUN.sub("-", text)
    text = _HYPHEN_RUN.sub("-", text)
    return text.strip("-")


def _substitute_terms(name: str) -> Optional[str]:
    """Replace dictionary terms inside ``name``; None if none occur."""
    replaced = False
    while contains_non_ascii(name):
        term = next((t for t in _TERMS_BY_LENGTH if t in name), None)
        if term is None:
            break
        name = name.replace(term, TERM_SLUGS[term], 1)
        replaced = True
    return name if replaced else None


def translate_segment(segment: str, generic_name: str) -> str:
    """Transliterate one name (no extension) to ASCII."""
    if not contains_non_ascii(segment):
        return segment

    translated = TERM_SLUGS.get(segment)
    if translated is None:
        translated = _substitute_terms(segment)
    if translated is None or contains_non_ascii(translated):
        translated = _strip_to_ascii(translated or segment)

    if not translated or translated == "-":
        return generic_name
    return translated


def _split_extension(filename: str):
    dot = filename.rfind(".")
    if dot > 0:
        return filename[:dot], filename[dot:]
    return filename, ""


def translate_filename(path: str) -> str:
    """Transliterate every segment of ``path``, keeping the extension."""
    parts = path.split("/")
    *directories, filename = parts

    name, extension = _split_extension(filename)
    translated = [
        translate_segment(d, GENERIC_DIRECTORY_NAME) if d else d
        for d in directories
    ]
    translated.append(translate_segment(name, GENERIC_FILE_NAME) + extension)
    return "/".join(translated)


def get_translated_path(
    source_path: str,
    target_language: str,
    base_language: str,
    output_dir: Optional[str] = None,
) -> str:
    """
    Output path of ``source_path`` rendered in ``target_language``.

    Base-language output mirrors the original path; every other language
    gets the ASCII-transliterated path.
    """
    output_dir = cfg.TRANSLATION_OUTPUT_DIR if output_dir is None else output_dir
    if target_language == base_language:
        relative = source_path
    else:
        relative = translate_filename(source_path)
    return f"{output_dir.rstrip('/')}/{target_language}/{relative}"
