"""
Configuration module for the task-graph planner.
Loads settings from environment variables or .env file.
任务图规划器配置模块。
从环境变量或 .env 文件加载所有配置项。
"""

import os
from dotenv import load_dotenv

load_dotenv()  # 自动读取项目根目录的 .env 文件（若存在），优先级低于系统环境变量

# --- LLM API Configuration (used only by LLMStepExecutor) ---
# --- LLM API 配置（仅 LLMStepExecutor 使用）---
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")   # OpenAI-compatible API base URL / OpenAI 兼容接口地址
LLM_API_KEY = os.getenv("LLM_API_KEY", "")                               # API key / API 密钥
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")                        # Model name / 模型名称

# --- Planning ---
# --- 执行计划 ---
PROCESS_STEP_COST_MS = int(os.getenv("PROCESS_STEP_COST_MS", "1000"))  # PROCESS 节点的预估耗时（毫秒），仅用于可视化

# --- Workflow Execution ---
# --- 工作流执行参数 ---
PARALLEL_EXECUTION = os.getenv("PARALLEL_EXECUTION", "false").lower() == "true"  # 是否按依赖波次并发执行步骤
MAX_PARALLEL_NODES = int(os.getenv("MAX_PARALLEL_NODES", "3"))                  # 每个波次最多并发执行的步骤数
STEP_TIMEOUT_SECONDS = float(os.getenv("STEP_TIMEOUT_SECONDS", "60"))           # TimeoutStepExecutor 单步超时（秒）

# --- Task Store ---
# --- 任务存储 ---
TASK_ID_LENGTH = int(os.getenv("TASK_ID_LENGTH", "10"))                         # 任务 ID 长度
TASK_MAX_AGE_SECONDS = float(os.getenv("TASK_MAX_AGE_SECONDS", str(24 * 60 * 60)))  # 过期任务清理阈值（秒），默认 24 小时
