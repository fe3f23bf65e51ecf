"""
数据流分层架构
  Layer 1 – Transport    : HTTP 获取（超时 / 重试）
  Layer 2 – Sources      : 数据源适配（TWSE / TPEX）
  Layer 3 – Acquisition  : 多数据源聚合
  Layer 4 – Cache        : 两级缓存（内存 → 文件 / Redis）
  Layer 5 – Search       : 行情搜索
  Layer 6 – Processing   : 数值解析与排行
"""
