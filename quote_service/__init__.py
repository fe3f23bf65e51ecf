"""
台股行情服务
整合上市（TWSE）与上柜（TPEX）每日行情的只读数据服务，提供 HTTP 接口

架构分层：
  传输层     (Transport)    → 超时、重试、错误分类
  适配层     (Sources)      → 上游格式校验与统一映射
  获取层     (Acquisition)  → 多数据源并发聚合
  缓存层     (Cache)        → 内存 / 持久化两级缓存
  搜索层     (Search)       → 分级子串匹配
  处理层     (Processing)   → 数值解析与排行
"""

__version__ = "1.0.0"
