"""页文件、缓冲池、区域分配、持久化单元与堆页。"""
