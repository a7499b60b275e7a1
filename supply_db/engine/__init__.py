"""记录编解码、有序索引、记录存储与 CRUD 服务。"""
